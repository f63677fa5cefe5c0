from __future__ import annotations
import asyncio
import os
from typing import MutableMapping, Optional, Sequence

import structlog

from relaypake.protocol.constants import CLOSE_IN, CLOSE_USER, DEV_HOME, OPEN_IN, OPEN_OUT
from relaypake.protocol.envelope import Envelope, decode
from relaypake.protocol.errors import ProtocolMismatch
from relaypake.protocol.phases import Phase, Workflow, require_phase
from relaypake.protocol.retry import RetryPolicy, Sleep, poll
from relaypake.protocol.shapes import LoginEnd, LoginStart
from relaypake.relay.mailbox import Mailbox
from relaypake.workflow.common import PhaseOutput, load_installation, relay_fetch
from relaypake.workflow.inbox import read_dev_inbox
from relaypake.workflow.login import LoginWorkflow

logger = structlog.get_logger()


class DevWorkflow:
    """LOGIN driven through the local mailbox file, plus the pre-seeded inbox.

    OPEN and CLOSE wait for the client's envelope to appear in the mailbox,
    run the matching LOGIN phase and post the reply back into the mailbox.
    """

    def __init__(self, prod: bool, mailbox: Mailbox, login: LoginWorkflow,
                 policy: RetryPolicy, sleep: Sleep = asyncio.sleep,
                 environ: Optional[MutableMapping[str, str]] = None):
        self.prod = prod
        self.mailbox = mailbox
        self.login = login
        self.policy = policy
        self.sleep = sleep
        self.environ = os.environ if environ is None else environ

    async def run(self, phase: Phase, args: Sequence[Envelope] = ()) -> PhaseOutput:
        require_phase(phase, Workflow.DEV)
        if self.prod:
            raise ProtocolMismatch(f"Data only in {DEV_HOME} during development")
        if phase is Phase.DEV_OPEN:
            return await self.open()
        if phase is Phase.DEV_CLOSE:
            return await self.close()
        return self.inbox()

    async def _await(self, command: str, shape, waiting_for: str) -> Envelope:
        return await poll(relay_fetch(self.mailbox, command, shape), self.policy, waiting_for, self.sleep)

    async def open(self) -> PhaseOutput:
        env = await self._await(OPEN_IN, LoginStart, "login open")
        out = self.login.open(env)
        self.mailbox.write(out.for_pages)
        logger.info("dev_reply_posted", command=OPEN_OUT)
        return out

    async def close(self) -> PhaseOutput:
        env = await self._await(CLOSE_IN, LoginEnd, "login close")
        installation = load_installation(self.login.installation_slot)
        # CLOSE's continuation is whatever OPEN left in the STATE slot
        final = decode(self.login.state_slot(installation).read())
        out = self.login.close(final, env)
        self.mailbox.write(out.for_pages)
        logger.info("dev_reply_posted", command=CLOSE_USER)
        return out

    def inbox(self) -> PhaseOutput:
        installation = load_installation(self.login.installation_slot)
        read_dev_inbox(self.prod, installation, self.environ)
        return PhaseOutput()
