"""Bearer credential handling shared by every outbound request."""

from __future__ import annotations

from dataclasses import dataclass

from seekrag.errors import Unauthorized

_SCHEME = "Bearer "


@dataclass(frozen=True)
class BearerCredential:
    """A validated bearer token. Storage policy is left to the caller."""

    token: str

    def __post_init__(self) -> None:
        if not self.token or not self.token.strip() or self.token != self.token.strip():
            raise Unauthorized("Missing or invalid authorization token")

    @classmethod
    def from_token(cls, token: str | None) -> "BearerCredential":
        return cls(token or "")

    @property
    def header(self) -> str:
        return f"{_SCHEME}{self.token}"

    def headers(self) -> dict[str, str]:
        return {"Authorization": self.header}

    def __repr__(self) -> str:
        return "BearerCredential(token=***)"


def parse_authorization(header: str | None) -> BearerCredential:
    """Parse an ``Authorization`` header value of the form ``Bearer <token>``."""

    if not header or not header.startswith(_SCHEME):
        raise Unauthorized("Missing or invalid authorization token")
    return BearerCredential(header[len(_SCHEME):])


def require_credential(auth: BearerCredential | str | None) -> BearerCredential:
    """Accept either an already parsed credential or a raw header value."""

    if isinstance(auth, BearerCredential):
        return auth
    return parse_authorization(auth)


__all__ = ["BearerCredential", "parse_authorization", "require_credential"]
