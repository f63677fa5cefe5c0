from __future__ import annotations
import base64
import secrets
from dataclasses import dataclass
from typing import Callable, Optional, Type

import structlog

from relaypake.protocol.constants import NEW_PASSWORD_BYTES, OUT_FILE
from relaypake.protocol.envelope import Envelope, decode
from relaypake.protocol.errors import ShapeError
from relaypake.protocol.shapes import Installation, S
from relaypake.relay.mailbox import Mailbox
from relaypake.relay.slots import DurableSlot

logger = structlog.get_logger()


@dataclass(frozen=True)
class PhaseOutput:
    """``for_pages`` goes to the public relay; ``for_next`` seeds the next local phase."""
    for_pages: str = ""
    for_next: str = ""

    @property
    def empty(self) -> bool:
        return not self.for_pages and not self.for_next


def write_secret_text(out: PhaseOutput, path: str = OUT_FILE) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"{out.for_pages}\n{out.for_next}")
    logger.info("secret_text_written", path=path)


def new_password() -> str:
    return base64.b64encode(secrets.token_bytes(NEW_PASSWORD_BYTES)).decode("ascii")


def relay_fetch(mailbox: Mailbox, command: str, shape: Type[S]) -> Callable[[], Optional[Envelope]]:
    """A poll step: None until the relay holds ``command``, then the envelope.

    Malformed text and a mis-shaped tree under the right command are fatal;
    an empty slot or another phase's envelope is simply not ready.
    """
    def fetch() -> Optional[Envelope]:
        text = mailbox.read()
        if not text:
            return None
        env = decode(text)
        if env.command != command:
            return None
        shape.from_tree(env.tree)
        return env
    return fetch


def load_installation(slot: DurableSlot) -> Installation:
    try:
        return Installation.from_tree(decode(slot.read()).tree)
    except ShapeError as e:
        raise ShapeError(f"Secret {slot.name} invalid.") from e
