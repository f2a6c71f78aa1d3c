"""Caller identity and access-token verification."""

from rpcruntime.auth.authenticator import Authenticator
from rpcruntime.auth.identity import (
    IDENTITY_KEY,
    AuthIdentity,
    get_identity,
    identity_from_claims_provider,
    set_identity,
)

__all__ = [
    "IDENTITY_KEY",
    "AuthIdentity",
    "Authenticator",
    "get_identity",
    "identity_from_claims_provider",
    "set_identity",
]
