# relaypake: bootstrap a service identity over an untrusted text relay
# SPAKE2 + X25519 handshake, Argon2id/ChaCha20Poly1305 secret envelopes

from __future__ import annotations

import argparse
import asyncio
import os
import secrets
import sys
from dataclasses import dataclass
from typing import List, MutableMapping, Optional, Sequence

import structlog

from relaypake.config import Settings, is_production, load_env_file, write_env_file
from relaypake.crypto.pake import require_crypto, require_spake2
from relaypake.crypto.primitives import b64url_d
from relaypake.crypto.sealed import require_aead, require_argon2
from relaypake.protocol.constants import ENV_INSTALLATION, ENV_PEPPER
from relaypake.protocol.envelope import Envelope, decode, encode
from relaypake.protocol.errors import ConfigError, FormatError, OperatorMessage, RelayPakeError, StepMismatch
from relaypake.protocol.phases import Phase, Workflow, next_phase, to_phase
from relaypake.protocol.retry import RetryPolicy, Sleep
from relaypake.relay.github import GitHub, GitHubApps
from relaypake.relay.mailbox import make_mailbox
from relaypake.relay.slots import EnvSlot, env_slots, github_slots
from relaypake.util.deps import check_dependencies
from relaypake.workflow.common import load_installation, write_secret_text
from relaypake.workflow.dev import DevWorkflow
from relaypake.workflow.login import LoginWorkflow
from relaypake.workflow.setup import SetupWorkflow

logger = structlog.get_logger()


@dataclass(frozen=True)
class Result:
    success: bool
    message: str


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )


def security_self_check():
    checks = []

    checks.append(("Python >= 3.9", sys.version_info >= (3, 9)))

    try:
        test = [secrets.randbits(16) for _ in range(10)]
        checks.append(("Random source", all(x != 0 for x in test)))
    except Exception:
        checks.append(("Random source", False))

    for name, require in [
        ("SPAKE2", require_spake2),
        ("Cryptography", require_crypto),
        ("AEAD (ChaCha20Poly1305)", require_aead),
        ("Argon2id", require_argon2),
    ]:
        try:
            require()
            checks.append((name, True))
        except RuntimeError:
            checks.append((name, False))

    try:
        b64url_d("aW52YWxpZCBwYWRkaW5n")
        checks.append(("Base64url strict decode (valid)", True))
    except ValueError:
        checks.append(("Base64url strict decode (valid)", False))

    try:
        b64url_d("invalid!@#$")
        checks.append(("Base64url strict decode (invalid)", False))
    except ValueError:
        checks.append(("Base64url strict decode (invalid)", True))

    sample = Envelope("check", {"a": b"\x00\xff", "b": {"c": "d"}})
    checks.append(("Envelope round trip", decode(encode(sample)) == sample))

    all_ok = all(ok for _, ok in checks)
    for name, ok in checks:
        (logger.info if ok else logger.error)("security_check", check=name, status=("OK" if ok else "FAILED"))

    if not all_ok:
        raise RuntimeError("Security self-check failed")
    logger.info("security_self_check_passed")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relaypake", description="PAKE bootstrap over an untrusted relay")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Service side: verify an operator")
    login_steps = login.add_subparsers(dest="step", required=True)
    login_open = login_steps.add_parser("open", help="Answer a client_auth_data envelope")
    login_open.add_argument("envelope")
    login_close = login_steps.add_parser("close", help="Check a client_auth_result envelope")
    login_close.add_argument("final", help="for_next text from login open")
    login_close.add_argument("envelope")

    setup = subparsers.add_parser("setup", help="Operator side: create the GitHub App and token")
    setup_steps = setup.add_subparsers(dest="step", required=True)
    setup_steps.add_parser("pub", help="Create a secure public channel")
    for name in ("app", "token"):
        p = setup_steps.add_parser(name)
        p.add_argument("step_input", help="for_next text from the previous setup phase")

    dev = subparsers.add_parser("dev", help="Local LOGIN through the development mailbox")
    dev.add_argument("step", choices=["open", "close", "inbox"])

    subparsers.add_parser("check", help="Run security self-check")
    return parser


def _inputs(args: argparse.Namespace) -> List[str]:
    names = ("final", "envelope", "step_input")
    return [getattr(args, n) for n in names if getattr(args, n, None) is not None]


def owner_token(settings: Settings, environ: MutableMapping[str, str]) -> str:
    if not settings.prod:
        return ""
    try:
        return load_installation(EnvSlot(ENV_INSTALLATION, environ)).installed.token
    except RelayPakeError:
        return environ.get("GITHUB_TOKEN", "")


def build_workflow(phase: Phase, settings: Settings, environ: MutableMapping[str, str],
                   sleep: Sleep = asyncio.sleep):
    github = GitHub(settings.owner, settings.repo, owner_token(settings, environ))
    mailbox = make_mailbox(settings.prod, github, settings.dev_home, settings.dev_tmp)
    slots = github_slots(github, settings.deployment) if settings.prod else env_slots(environ)
    policy = RetryPolicy.from_delay_seconds(settings.delay)
    if phase.workflow is Workflow.SETUP:
        return SetupWorkflow(mailbox, GitHubApps(github), slots, policy, sleep)
    pepper = environ.get(ENV_PEPPER, "").encode("utf-8")
    login = LoginWorkflow(settings.prod, pepper, slots, EnvSlot(ENV_INSTALLATION, environ), environ)
    if phase.workflow is Workflow.LOGIN:
        return login
    return DevWorkflow(settings.prod, mailbox, login, policy, sleep, environ)


def operator_message(phase: Phase, error: Exception) -> str:
    """Fixed text shown to the operator; crypto failures are not told apart."""
    if phase.workflow is not Workflow.SETUP:
        return OperatorMessage.VERIFY
    if phase is Phase.SETUP_PUB:
        return OperatorMessage.CHANNEL
    bad_input = isinstance(error, StepMismatch)
    if phase is Phase.SETUP_APP:
        return OperatorMessage.APP_INPUT if bad_input else OperatorMessage.APP
    return OperatorMessage.TOKEN_INPUT if bad_input else OperatorMessage.TOKEN


def execute(argv: Optional[Sequence[str]] = None,
            environ: Optional[MutableMapping[str, str]] = None,
            sleep: Sleep = asyncio.sleep) -> Result:
    args = build_parser().parse_args(argv)
    environ = os.environ if environ is None else environ

    if args.command == "check":
        security_self_check()
        return Result(True, "Security self-check passed")

    deployment = environ.get("DEPLOYMENT", "")
    if deployment and not is_production(deployment):
        load_env_file(environ)
    try:
        settings = Settings.from_env(environ)
    except ConfigError as e:
        return Result(False, str(e))
    logger.info("deployment", prod=settings.prod, name=settings.deployment)

    phase = to_phase(args.command, args.step)
    try:
        try:
            inputs = [decode(text) for text in _inputs(args)]
        except FormatError as e:
            raise StepMismatch(str(e)) from e
        workflow = build_workflow(phase, settings, environ, sleep)
        out = asyncio.run(workflow.run(phase, inputs))
    except Exception as e:
        logger.error("phase_failed", phase=phase.name, error=str(e))
        return Result(False, operator_message(phase, e))

    if not out.empty:
        write_secret_text(out, settings.out_file)
    if not settings.prod:
        try:
            write_env_file(environ)
            logger.info("env_file_written")
        except OSError as e:
            logger.error("env_file_failed", error=str(e))
    following = next_phase(phase)
    logger.info("phase_complete", phase=phase.name, next=following.name if following else None)
    return Result(True, "Action complete!")


def main(argv: Optional[Sequence[str]] = None) -> None:
    ok, missing = check_dependencies()
    if not ok:
        print("ERROR: Missing dependencies:")
        for dep in missing:
            print(f"  - {dep}")
        print(f"\nInstall with:\npip install {' '.join(missing)}")
        sys.exit(1)

    configure_logging()
    try:
        result = execute(argv)
    except RuntimeError as e:
        logger.error("unexpected_error", error=str(e))
        result = Result(False, OperatorMessage.UNEXPECTED)

    if result.success:
        print(result.message)
        return
    print(result.message, file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
