from __future__ import annotations
import os
from typing import Protocol

import structlog

from relaypake.protocol.errors import UpstreamError
from relaypake.relay.github import GitHub

logger = structlog.get_logger()


class Mailbox(Protocol):
    """The single shared relay text slot."""

    def read(self) -> str: ...

    def write(self, text: str) -> None: ...


class LocalMailbox:
    def __init__(self, path: str):
        self.path = path

    def read(self) -> str:
        try:
            with open(self.path, encoding="utf-8") as f:
                return f.read().replace("\n", "")
        except FileNotFoundError:
            return ""

    def write(self, text: str) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(text)


class RemoteMailbox:
    """Body of the first open issue the repository owner created."""

    def __init__(self, github: GitHub):
        self.github = github

    def read(self) -> str:
        try:
            return self.github.issue_text().replace("\n", "")
        except UpstreamError as e:
            logger.warning("mailbox_unreachable", error=str(e))
            return ""

    def write(self, text: str) -> None:
        self.github.write_issue(text)


def dev_mailbox_path(home: str, tmp: str) -> str:
    return os.path.join(tmp, home)


def make_mailbox(prod: bool, github: GitHub, home: str, tmp: str) -> Mailbox:
    if prod:
        return RemoteMailbox(github)
    return LocalMailbox(dev_mailbox_path(home, tmp))
