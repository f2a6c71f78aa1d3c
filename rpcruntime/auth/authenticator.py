"""Bearer JWT verification against a JSON Web Key set."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import jwt

from rpcruntime.context import Context
from rpcruntime.errors import ERR_CODE_INVALID_TOKEN, ErrorValue
from rpcruntime.logging import logger_from_context

__all__ = ["Authenticator"]

_BEARER_PREFIX = "bearer "

# Checked in order; subclasses must precede their bases.
_FAILURE_MESSAGES: tuple[tuple[type[jwt.PyJWTError], str], ...] = (
    (jwt.ExpiredSignatureError, "expired"),
    (jwt.ImmatureSignatureError, "not valid yet"),
    (jwt.InvalidIssuedAtError, "issued in future"),
    (jwt.InvalidIssuerError, "invalid issuer"),
    (jwt.InvalidAudienceError, "invalid audience"),
    (jwt.MissingRequiredClaimError, "invalid claims"),
    (jwt.DecodeError, "jwt parse error"),
)


def _strip_bearer(token: str) -> str:
    token = token.strip()
    if token[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
        return token[len(_BEARER_PREFIX) :].strip()
    return token


class Authenticator:
    """Validate access tokens and return their claims."""

    def __init__(
        self,
        keys: jwt.PyJWKSet | Mapping[str, Any],
        issuer: str,
        *,
        audience: str | None = None,
        leeway: float = 0.0,
    ) -> None:
        self.keys = keys if isinstance(keys, jwt.PyJWKSet) else jwt.PyJWKSet.from_dict(dict(keys))
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway

    @classmethod
    def from_openid_config(
        cls,
        config_url: str,
        *,
        client: httpx.Client | None = None,
        audience: str | None = None,
    ) -> Authenticator:
        """Load issuer and signing keys from an OpenID configuration document."""

        owns_client = client is None
        http = client or httpx.Client(timeout=10.0)
        try:
            config = _get_json(http, config_url)
            keyset = _get_json(http, str(config["jwks_uri"]))
        finally:
            if owns_client:
                http.close()
        return cls(keyset, str(config["issuer"]), audience=audience)

    def _signing_key(self, token: str) -> jwt.PyJWK:
        header = jwt.get_unverified_header(token)
        kid = header.get("kid")
        if kid is not None:
            for key in self.keys.keys:
                if key.key_id == kid:
                    return key
            raise jwt.InvalidKeyError(f"no signing key with kid {kid!r}")
        if len(self.keys.keys) == 1:
            return self.keys.keys[0]
        raise jwt.InvalidKeyError("token has no kid and key set is ambiguous")

    def authenticate(self, ctx: Context, token: str) -> dict[str, Any]:
        """Verify ``token`` and return its claims, or raise ``invalid_token``."""

        raw = _strip_bearer(token)
        try:
            key = self._signing_key(raw)
            return jwt.decode(
                raw,
                key.key,
                algorithms=[key.algorithm_name],
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway,
                options={"verify_aud": self.audience is not None, "require": ["iss"]},
            )
        except jwt.PyJWTError as exc:
            message = _failure_message(exc)
            if message == "jwt validation error":
                logger_from_context(ctx).entry.with_error(exc).warning("jwt validation error")
            raise ErrorValue.wrap(ERR_CODE_INVALID_TOKEN, exc).with_message(message) from exc


def _failure_message(exc: jwt.PyJWTError) -> str:
    # a future iat surfaces as an immature signature
    if isinstance(exc, jwt.ImmatureSignatureError) and "(iat)" in str(exc):
        return "issued in future"
    for exc_type, message in _FAILURE_MESSAGES:
        if isinstance(exc, exc_type):
            return message
    return "jwt validation error"


def _get_json(client: httpx.Client, url: str) -> dict[str, Any]:
    response = client.get(url)
    if response.status_code != 200:
        raise RuntimeError(f"http 200 expected from {url}, got {response.status_code}")
    if not response.content:
        raise RuntimeError(f"response body expected from {url}")
    return response.json()
