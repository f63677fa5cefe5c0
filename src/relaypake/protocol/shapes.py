from __future__ import annotations
from typing import Annotated, Any, Dict, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, Strict, StrictBytes, StrictStr, ValidationError

from relaypake.protocol.constants import IV_BYTES, TAG_BYTES
from relaypake.protocol.envelope import Envelope, Tree
from relaypake.protocol.errors import ProtocolMismatch, ShapeError

Iv = Annotated[bytes, Strict(), Field(min_length=IV_BYTES, max_length=IV_BYTES)]
Tag = Annotated[bytes, Strict(), Field(min_length=TAG_BYTES, max_length=TAG_BYTES)]
Trio = Tuple[str, str, str]

S = TypeVar("S", bound="Shape")


class Shape(BaseModel):
    """A decoded tree with every required field present and typed."""
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_tree(cls: Type[S], tree: Any) -> S:
        try:
            return cls.model_validate(tree)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise ShapeError(f"{cls.__name__} invalid: {', '.join(fields)}") from e

    def to_tree(self) -> Tree:
        return self.model_dump()


class CipherItem(Shape):
    iv: Iv
    tag: Tag
    ciphertext: StrictBytes


class SecretEnvelope(Shape):
    salt: StrictBytes
    key: CipherItem
    data: CipherItem


class ClientAuthData(Shape):
    sid: StrictStr
    pw: StrictBytes
    Xu: StrictBytes
    alpha: StrictBytes


class CredentialEnvelope(Shape):
    pu: CipherItem
    Pu: CipherItem
    Ps: CipherItem


class ServerAuthData(Shape):
    As: StrictBytes
    Xs: StrictBytes
    beta: StrictBytes
    c: CredentialEnvelope


class ClientAuthResult(Shape):
    Au: StrictBytes


class ServerFinal(Shape):
    Au: StrictBytes
    token: StrictStr


class SessionState(ServerFinal):
    sid: StrictStr


class ClientState(Shape):
    r: StrictBytes
    xu: StrictBytes
    mask: StrictBytes


class AppCredentials(Shape):
    id: StrictStr
    client_id: StrictStr
    client_secret: StrictStr
    pem: StrictStr


class TokenInputs(Shape):
    shared: StrictStr
    app: AppCredentials


class Installed(Shape):
    token: StrictStr
    expires_at: StrictStr = ""
    permissions: Dict[str, StrictStr] = {}


class Installation(Shape):
    installed: Installed
    shared: StrictStr
    app: AppCredentials


class Pasted(Shape):
    C: SecretEnvelope
    S: ServerAuthData


class LoginStart(Shape):
    client_auth_data: ClientAuthData


class LoginEnd(Shape):
    client_auth_result: ClientAuthResult


class MailTable(Shape):
    data: SecretEnvelope


def expect(env: Envelope, command: str, shape: Type[S]) -> S:
    """Decode ``env`` as ``shape`` only if it carries ``command``."""
    if env.command != command:
        raise ProtocolMismatch(f"Expected command {command!r}, got {env.command!r}")
    return shape.from_tree(env.tree)


def to_trio(values: Sequence[Any]) -> Trio:
    if len(values) != 3 or not all(isinstance(v, str) for v in values):
        raise ShapeError("Trio must be exactly 3 strings")
    return (values[0], values[1], values[2])
