from __future__ import annotations
import asyncio
from typing import Optional, Protocol, Sequence, Type

import structlog

from relaypake.crypto.pake import PakeErrorCode, client_finish, client_init
from relaypake.crypto.primitives import token_key
from relaypake.crypto.sealed import open_sealed, seal
from relaypake.protocol.constants import (
    APP_AUTH, APP_IN, APP_OUT, APP_PASTED, ENV_INSTALLATION, PAKE_ITERATIONS, STEP, USER_ID,
)
from relaypake.protocol.envelope import Envelope, encode
from relaypake.protocol.errors import PakeRejected, ProtocolMismatch, ShapeError, StepMismatch
from relaypake.protocol.phases import Phase, Workflow, require_phase
from relaypake.protocol.retry import RetryPolicy, Sleep, poll
from relaypake.protocol.shapes import (
    AppCredentials, ClientState, Installation, Installed, Pasted, S, TokenInputs, expect,
)
from relaypake.relay.mailbox import Mailbox
from relaypake.relay.slots import SlotFactory
from relaypake.workflow.common import PhaseOutput, new_password, relay_fetch

logger = structlog.get_logger()


class AppBackend(Protocol):
    def convert_manifest(self, code: str) -> AppCredentials: ...

    def find_installation(self, app: AppCredentials) -> Optional[int]: ...

    def create_installation_token(self, app: AppCredentials, installation_id: int) -> Installed: ...


def _step(env: Optional[Envelope], shape: Type[S]) -> S:
    if env is None:
        raise StepMismatch("Missing step input")
    try:
        return expect(env, STEP, shape)
    except (ShapeError, ProtocolMismatch) as e:
        raise StepMismatch(str(e)) from e


class SetupWorkflow:
    """Operator side of SETUP: PUB, then APP, then TOKEN, one invocation each."""

    def __init__(self, mailbox: Mailbox, apps: AppBackend, slots: SlotFactory,
                 policy: RetryPolicy, sleep: Sleep = asyncio.sleep,
                 user_id: str = USER_ID, iterations: int = PAKE_ITERATIONS):
        self.mailbox = mailbox
        self.apps = apps
        self.slots = slots
        self.policy = policy
        self.sleep = sleep
        self.user_id = user_id
        self.iterations = iterations

    async def run(self, phase: Phase, args: Sequence[Envelope]) -> PhaseOutput:
        require_phase(phase, Workflow.SETUP)
        step = args[0] if args else None
        if phase is Phase.SETUP_PUB:
            return self.pub()
        if phase is Phase.SETUP_APP:
            return await self.app(step)
        return await self.token(step)

    def pub(self) -> PhaseOutput:
        logger.info("creating_public_channel")
        state, data = client_init(self.user_id, new_password())
        logger.info("created_public_channel")
        return PhaseOutput(
            for_pages=encode(Envelope(APP_IN, {"client_auth_data": data.to_tree()})),
            for_next=encode(Envelope(STEP, state.to_tree())),
        )

    async def app(self, step: Optional[Envelope]) -> PhaseOutput:
        state = _step(step, ClientState)
        logger.info("creating_app")
        fetch = relay_fetch(self.mailbox, APP_PASTED, Pasted)
        pasted = Pasted.from_tree((await poll(fetch, self.policy, "GitHub App", self.sleep)).tree)

        outcome = client_finish(state, pasted.S, self.iterations)
        if isinstance(outcome, PakeErrorCode):
            raise PakeRejected(outcome.code)
        try:
            code = open_sealed(pasted.C, token_key(outcome.token)).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ShapeError("Manifest code is not text") from e
        app = self.apps.convert_manifest(code)
        logger.info("created_app", app_id=app.id)

        tree = {"client_auth_result": outcome.client_auth_result.to_tree()}
        inputs = TokenInputs(shared=outcome.token, app=app)
        return PhaseOutput(
            for_pages=encode(Envelope(APP_OUT, tree)),
            for_next=encode(Envelope(STEP, inputs.to_tree())),
        )

    async def token(self, step: Optional[Envelope]) -> PhaseOutput:
        inputs = _step(step, TokenInputs)
        logger.info("awaiting_installation", app_id=inputs.app.id)
        installation_id = await poll(
            lambda: self.apps.find_installation(inputs.app), self.policy, "installation", self.sleep,
        )
        installed = self.apps.create_installation_token(inputs.app, installation_id)
        record = Installation(installed=installed, shared=inputs.shared, app=inputs.app)
        self.slots(ENV_INSTALLATION, installed.token).write(encode(Envelope("", record.to_tree())))

        sealed = seal(installed.token.encode("utf-8"), token_key(inputs.shared))
        logger.info("created_token", installation_id=installation_id)
        return PhaseOutput(for_pages=encode(Envelope(APP_AUTH, sealed.to_tree())))
