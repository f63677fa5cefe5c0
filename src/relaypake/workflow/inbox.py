from __future__ import annotations
from typing import MutableMapping

import structlog

from relaypake.crypto.primitives import token_key
from relaypake.crypto.sealed import open_sealed
from relaypake.protocol.constants import DEV_HOME, ENV_MAIL_TABLE, MAIL_TABLE, TRIO_NAMES
from relaypake.protocol.envelope import decode
from relaypake.protocol.errors import DecryptError, FormatError, ProtocolMismatch, ShapeError
from relaypake.protocol.shapes import Installation, MailTable, Trio, expect, to_trio

logger = structlog.get_logger()

EMPTY_TRIO: Trio = ("", "", "")


def _open_trio(table: MailTable, installation: Installation) -> Trio:
    plain = open_sealed(table.data, token_key(installation.shared))
    try:
        return to_trio(plain.decode("utf-8").split("\n"))
    except UnicodeDecodeError as e:
        raise ShapeError("Trio is not text") from e


def read_inbox(prod: bool, installation: Installation, environ: MutableMapping[str, str]) -> Trio:
    """The Trio handed to a freshly verified user.

    Development reads the three variables directly; production opens the
    sealed MAIL__TABLE. A missing or unreadable table yields empty strings.
    """
    if not prod:
        return to_trio([environ.get(k, "") for k in TRIO_NAMES])
    try:
        table = MailTable.from_tree(decode(environ.get(ENV_MAIL_TABLE, "")).tree)
    except (FormatError, ShapeError) as e:
        logger.warning("inbox_missing", error=str(e))
        return EMPTY_TRIO
    try:
        return _open_trio(table, installation)
    except (DecryptError, ShapeError) as e:
        logger.warning("inbox_unreadable", error=str(e))
        return EMPTY_TRIO


def read_dev_inbox(prod: bool, installation: Installation, environ: MutableMapping[str, str]) -> Trio:
    """Open the pre-seeded ``mail__table`` and export it as SERVERS/CLIENTS/SECRETS."""
    if prod:
        raise ProtocolMismatch(f"Data only in {DEV_HOME} during development")
    table = expect(decode(environ.get(ENV_MAIL_TABLE, "")), MAIL_TABLE, MailTable)
    trio = _open_trio(table, installation)
    for name, value in zip(TRIO_NAMES, trio):
        environ[name] = value
    logger.info("dev_inbox_loaded", names=list(TRIO_NAMES))
    return trio
