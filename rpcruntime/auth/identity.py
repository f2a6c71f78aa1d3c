from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from rpcruntime.context import Context, ContextKey
from rpcruntime.errors import ERR_CODE_ACCESS_DENIED, ErrorValue

__all__ = [
    "IDENTITY_KEY",
    "AuthIdentity",
    "get_identity",
    "identity_from_claims_provider",
    "set_identity",
]


def _as_strings(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        stripped = value.strip().strip("[]")
        return tuple(part for part in stripped.split(" ") if part)
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value if item is not None and str(item))
    return (str(value),)


@dataclass(frozen=True, slots=True)
class AuthIdentity:
    """Authenticated caller. The zero value means "not authenticated"."""

    version: str = ""
    id: str = ""
    issuer: str = ""
    subject: str = ""
    audience: tuple[str, ...] = ()
    scopes: tuple[str, ...] = ()
    account_id: str = ""

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> AuthIdentity:
        """Build an identity from raw access-token claims.

        Scopes are read from ``scope`` (space-delimited) or ``scopes`` (list).
        """

        scopes = claims.get("scopes")
        if scopes is None:
            scopes = claims.get("scope")
        return cls(
            version=str(claims.get("v") or ""),
            id=str(claims.get("jti") or ""),
            issuer=str(claims.get("iss") or ""),
            subject=str(claims.get("sub") or ""),
            audience=_as_strings(claims.get("aud")),
            scopes=_as_strings(scopes),
            account_id=str(claims.get("account_id") or ""),
        )

    @property
    def is_authenticated(self) -> bool:
        return bool(self.subject)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def must_have_scope(self, scope: str) -> None:
        """Raise ``access_denied`` unless the identity holds ``scope``."""

        if scope not in self.scopes:
            raise ErrorValue.new(ERR_CODE_ACCESS_DENIED)


IDENTITY_KEY: ContextKey[AuthIdentity] = ContextKey("authidentity")

_ANONYMOUS = AuthIdentity()


def get_identity(ctx: Context) -> AuthIdentity:
    return ctx.value(IDENTITY_KEY, _ANONYMOUS)


def set_identity(ctx: Context, identity: AuthIdentity) -> Context:
    return ctx.with_value(IDENTITY_KEY, identity)


def identity_from_claims_provider(ctx: Context, claims: Mapping[str, Any]) -> Context:
    """Identity provider that trusts the claims as already verified."""

    return set_identity(ctx, AuthIdentity.from_claims(claims))
