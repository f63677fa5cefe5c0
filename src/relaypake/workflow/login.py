from __future__ import annotations
import os
from typing import MutableMapping, Optional, Sequence

import structlog
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from relaypake.crypto.pake import PakeCode, server_auth, server_verify
from relaypake.crypto.primitives import b64url_d, b64url_e, safe_compare, token_key
from relaypake.crypto.sealed import seal
from relaypake.protocol.constants import (
    CLOSE_IN, CLOSE_MAIL, CLOSE_USER, ENV_OLD_HASH, ENV_PEPPER, ENV_RECORD, ENV_SESSION, ENV_STATE,
    OPEN_IN, OPEN_NEXT, OPEN_OUT, PAKE_ITERATIONS,
)
from relaypake.protocol.envelope import Envelope, decode, encode
from relaypake.protocol.errors import ConfigError, PakeRejected, ProtocolMismatch, ShapeError
from relaypake.protocol.phases import Phase, Workflow, require_phase
from relaypake.protocol.shapes import Installation, LoginEnd, LoginStart, SessionState, expect
from relaypake.relay.slots import DurableSlot, SlotFactory
from relaypake.workflow.common import PhaseOutput, load_installation
from relaypake.workflow.inbox import read_inbox

logger = structlog.get_logger()


def can_reset(environ: MutableMapping[str, str]) -> bool:
    """True only when SESSION verifies against the operator-supplied OLD_HASH."""
    old_hash = environ.get(ENV_OLD_HASH, "")
    session = environ.get(ENV_SESSION, "")
    if not old_hash or not session:
        return False
    try:
        return PasswordHasher().verify(old_hash, session)
    except (VerificationError, InvalidHashError):
        return False


class LoginWorkflow:
    """Service side of LOGIN: OPEN answers the client, CLOSE checks its proof.

    The session state written at OPEN lives in the durable STATE slot and is
    cleared once CLOSE accepts a proof, so a replayed result cannot match.

    The operator's password record lives in the PASSWORD_RECORD slot. The
    first OPEN registers it; later clients must present the same record
    unless SESSION verifies against OLD_HASH, which allows a new one.
    """

    def __init__(self, prod: bool, pepper: bytes, slots: SlotFactory,
                 installation_slot: DurableSlot,
                 environ: Optional[MutableMapping[str, str]] = None,
                 iterations: int = PAKE_ITERATIONS):
        self.prod = prod
        self.pepper = pepper
        self.slots = slots
        self.installation_slot = installation_slot
        self.environ = os.environ if environ is None else environ
        self.iterations = iterations

    def state_slot(self, installation: Installation) -> DurableSlot:
        return self.slots(ENV_STATE, installation.installed.token)

    def record_slot(self, installation: Installation) -> DurableSlot:
        return self.slots(ENV_RECORD, installation.installed.token)

    def registered_record(self, slot: DurableSlot, reset: bool) -> Optional[bytes]:
        """Stored record, or None when the next client may register its own."""
        stored = slot.read()
        if not stored or reset:
            return None
        try:
            return b64url_d(stored)
        except ValueError as e:
            raise ConfigError(f"Invalid env: {ENV_RECORD}") from e

    async def run(self, phase: Phase, args: Sequence[Envelope]) -> PhaseOutput:
        require_phase(phase, Workflow.LOGIN)
        if phase is Phase.LOGIN_OPEN and args:
            return self.open(args[0])
        if phase is Phase.LOGIN_OPEN:
            raise ProtocolMismatch("No login open command.")
        if len(args) < 2:
            raise ProtocolMismatch("LOGIN CLOSE needs the server final and the client result")
        return self.close(args[0], args[1])

    def open(self, env: Envelope) -> PhaseOutput:
        if not self.pepper:
            raise ConfigError(f"Invalid env: {ENV_PEPPER}")
        try:
            start = expect(env, OPEN_IN, LoginStart)
        except ShapeError as e:
            raise ProtocolMismatch("No login open command.") from e
        installation = load_installation(self.installation_slot)
        data = start.client_auth_data
        reset = can_reset(self.environ)
        record_slot = self.record_slot(installation)
        record = self.registered_record(record_slot, reset)
        server_auth_data, final = server_auth(
            data, data.pw if record is None else record, self.pepper, self.iterations,
        )
        if record is None:
            record_slot.write(b64url_e(data.pw))
            logger.info("password_registered", sid=data.sid, reset=reset)

        state = SessionState(sid=data.sid, Au=final.Au, token=final.token)
        for_next = encode(Envelope(OPEN_NEXT, state.to_tree()))
        self.state_slot(installation).write(for_next)
        for_pages = encode(Envelope(OPEN_OUT, {"server_auth_data": server_auth_data.to_tree()}))
        logger.info("login_opened", sid=data.sid, reset=reset)
        return PhaseOutput(for_pages=for_pages, for_next=for_next)

    def close(self, final_env: Envelope, env: Envelope) -> PhaseOutput:
        installation = load_installation(self.installation_slot)
        slot = self.state_slot(installation)
        try:
            result = expect(env, CLOSE_IN, LoginEnd).client_auth_result
            final = expect(final_env, OPEN_NEXT, SessionState)
            stored = expect(decode(slot.read()), OPEN_NEXT, SessionState)
        except ShapeError as e:
            raise ProtocolMismatch("Invalid workflow inputs.") from e

        same_session = (
            stored.sid == final.sid
            and stored.token == final.token
            and safe_compare(stored.Au, final.Au)
        )
        if not same_session:
            raise ProtocolMismatch("Server final does not match the open session.")
        if not server_verify(final, result):
            raise PakeRejected(PakeCode.BAD_CLIENT_PROOF)

        reset = can_reset(self.environ)
        trio = read_inbox(self.prod, installation, self.environ)
        mail = seal("\n".join(trio).encode("utf-8"), token_key(final.token))
        for_pages = encode(Envelope(CLOSE_USER, {"user": final.sid, "data": mail.to_tree()}))
        session = {"user": final.sid, "session": PasswordHasher().hash(final.token), "reset": int(reset)}
        for_next = encode(Envelope(CLOSE_MAIL, session))
        slot.write("")
        logger.info("login_closed", sid=final.sid, reset=reset)
        return PhaseOutput(for_pages=for_pages, for_next=for_next)
