from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, MutableMapping

from dotenv import dotenv_values

from relaypake.protocol.constants import DELAY_S, DEV_HOME, DEV_TMP, ENV_ALL, OUT_FILE
from relaypake.protocol.errors import ConfigError

DEVELOPMENT = "DEVELOPMENT"


def is_production(deployment: str) -> bool:
    return deployment.strip().upper() != DEVELOPMENT


@dataclass(frozen=True)
class Settings:
    owner: str
    repo: str
    deployment: str
    prod: bool
    delay: float = DELAY_S
    dev_home: str = DEV_HOME
    dev_tmp: str = DEV_TMP
    out_file: str = OUT_FILE

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "Settings":
        remote = environ.get("REMOTE", "").split("/")
        if len(remote) != 2 or not all(remote):
            raise ConfigError("Invalid env: REMOTE")
        deployment = environ.get("DEPLOYMENT", "")
        if not deployment:
            raise ConfigError("Invalid env: DEPLOYMENT")
        return cls(owner=remote[0], repo=remote[1], deployment=deployment,
                   prod=is_production(deployment))


def load_env_file(environ: MutableMapping[str, str], path: str = ".env") -> None:
    """Fill unset variables from a local .env; the process environment wins."""
    for name, value in dotenv_values(path).items():
        if value is not None:
            environ.setdefault(name, value)


def write_env_file(environ: MutableMapping[str, str], path: str = ".env") -> None:
    lines = [f'{name}="{environ[name]}"' for name in ENV_ALL if environ.get(name)]
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
