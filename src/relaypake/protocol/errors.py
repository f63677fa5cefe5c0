from __future__ import annotations
from typing import Optional


class RelayPakeError(Exception):
    pass


class FormatError(RelayPakeError):
    """Relay text that is not a well-formed envelope."""


class ShapeError(RelayPakeError):
    """A decoded tree missing required typed fields."""


class ProtocolMismatch(RelayPakeError):
    """Wrong command tag or phase sequencing."""


class StepMismatch(ProtocolMismatch):
    """The local continuation fed to a phase is not the one it expects."""


class DecryptError(RelayPakeError):
    pass


class PakeRejected(RelayPakeError):
    def __init__(self, code: int, message: str = ""):
        super().__init__(message or f"PAKE error code: {code}")
        self.code = code


class Timeout(RelayPakeError):
    pass


class UpstreamError(RelayPakeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ConfigError(RelayPakeError):
    pass


class OperatorMessage:
    VERIFY = "Unable to verify"
    CHANNEL = "Error making secure public channel."
    APP_INPUT = "Can't create App."
    APP = "Unable to make GitHub App."
    TOKEN_INPUT = "Can't create Token."
    TOKEN = "Unable to make GitHub Token."
    UNEXPECTED = "Unexpected Error Occured"
