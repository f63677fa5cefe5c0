from __future__ import annotations
from enum import Enum
from typing import Dict, Optional, Tuple

from relaypake.protocol.errors import ProtocolMismatch


class Workflow(Enum):
    LOGIN = "login"
    SETUP = "setup"
    DEV = "dev"


class Phase(Enum):
    LOGIN_OPEN = (Workflow.LOGIN, "open")
    LOGIN_CLOSE = (Workflow.LOGIN, "close")
    SETUP_PUB = (Workflow.SETUP, "pub")
    SETUP_APP = (Workflow.SETUP, "app")
    SETUP_TOKEN = (Workflow.SETUP, "token")
    DEV_OPEN = (Workflow.DEV, "open")
    DEV_CLOSE = (Workflow.DEV, "close")
    DEV_INBOX = (Workflow.DEV, "inbox")

    @property
    def workflow(self) -> Workflow:
        return self.value[0]

    @property
    def step(self) -> str:
        return self.value[1]


# Order within each workflow; every phase is a separate invocation.
SEQUENCES: Dict[Workflow, Tuple[Phase, ...]] = {
    Workflow.LOGIN: (Phase.LOGIN_OPEN, Phase.LOGIN_CLOSE),
    Workflow.SETUP: (Phase.SETUP_PUB, Phase.SETUP_APP, Phase.SETUP_TOKEN),
    Workflow.DEV: (Phase.DEV_OPEN, Phase.DEV_CLOSE, Phase.DEV_INBOX),
}


def to_phase(workflow: str, step: str) -> Phase:
    for phase in Phase:
        if phase.workflow.value == workflow.lower() and phase.step == step.lower():
            return phase
    raise ProtocolMismatch(f"No phase {step!r} in workflow {workflow!r}")


def require_phase(phase: Phase, workflow: Workflow) -> None:
    if phase.workflow is not workflow:
        raise ProtocolMismatch(f"{phase.name} is not a {workflow.name} phase")


def next_phase(phase: Phase) -> Optional[Phase]:
    seq = SEQUENCES[phase.workflow]
    i = seq.index(phase)
    return seq[i + 1] if i + 1 < len(seq) else None
