from __future__ import annotations
import os
from typing import Callable, MutableMapping, Optional, Protocol

from relaypake.relay.github import GitHub


class DurableSlot(Protocol):
    """Named state that outlives one phase; one phase writes it at a time."""
    name: str

    def read(self) -> str: ...

    def write(self, text: str) -> None: ...


# (slot name, owner token) -> slot
SlotFactory = Callable[[str, str], DurableSlot]


class EnvSlot:
    def __init__(self, name: str, environ: Optional[MutableMapping[str, str]] = None):
        self.name = name
        self.environ = os.environ if environ is None else environ

    def read(self) -> str:
        return self.environ.get(self.name, "")

    def write(self, text: str) -> None:
        self.environ[self.name] = text


class GitHubSecretSlot:
    """Environment secret: written through the API, read back as an env var."""

    def __init__(self, name: str, github: GitHub, env: str, token: str,
                 environ: Optional[MutableMapping[str, str]] = None):
        self.name = name
        self.github = github
        self.env = env
        self.token = token
        self.environ = os.environ if environ is None else environ

    def read(self) -> str:
        return self.environ.get(self.name, "")

    def write(self, text: str) -> None:
        self.github.set_secret(self.env, self.name, text, self.token)


def env_slots(environ: Optional[MutableMapping[str, str]] = None) -> SlotFactory:
    return lambda name, _token: EnvSlot(name, environ)


def github_slots(github: GitHub, env: str) -> SlotFactory:
    return lambda name, token: GitHubSecretSlot(name, github, env, token)
