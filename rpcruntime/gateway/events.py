"""HTTP gateway event and response envelopes."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "GatewayAuthorizer",
    "GatewayEvent",
    "GatewayJWT",
    "GatewayRequestContext",
    "GatewayResponse",
]

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


class GatewayJWT(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    claims: dict[str, str] = Field(default_factory=dict)
    scopes: list[str] | None = None


class GatewayAuthorizer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    jwt: GatewayJWT = Field(default_factory=GatewayJWT)


class GatewayRequestContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    request_id: str = Field("", alias="requestId")
    authorizer: GatewayAuthorizer | None = None


class GatewayEvent(BaseModel):
    """The subset of an HTTP gateway (payload v2) event the adapter reads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    body: str | None = None
    is_base64_encoded: bool = Field(False, alias="isBase64Encoded")
    headers: dict[str, str] = Field(default_factory=dict)
    path_parameters: dict[str, str] | None = Field(default=None, alias="pathParameters")
    request_context: GatewayRequestContext = Field(
        default_factory=GatewayRequestContext, alias="requestContext"
    )

    def body_bytes(self) -> bytes:
        """Return the raw request body, decoding base64 when flagged."""

        if not self.body:
            return b""
        if self.is_base64_encoded:
            try:
                return base64.b64decode(self.body, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("request body is not valid base64") from exc
        return self.body.encode("utf-8")

    def raw_claims(self) -> dict[str, Any]:
        """Return authorizer claims normalised for identity providers.

        ``scope`` is synthesised from the scopes list, and an ``aud`` claim
        flattened to ``"[a b]"`` by the gateway is split back into a list.
        """

        authorizer = self.request_context.authorizer or GatewayAuthorizer()
        claims: dict[str, Any] = {"scope": " ".join(authorizer.jwt.scopes or [])}
        for key, value in authorizer.jwt.claims.items():
            if key == "aud":
                claims["aud"] = value.strip("[]").split(" ")
            else:
                claims[key] = value
        return claims


class GatewayResponse(BaseModel):
    """Proxy response envelope returned to the gateway."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    status_code: int = Field(..., alias="statusCode")
    body: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    is_base64_encoded: bool = Field(False, alias="isBase64Encoded")

    @classmethod
    def json_body(cls, status_code: int, body: bytes | str) -> GatewayResponse:
        text = body.decode("utf-8") if isinstance(body, bytes) else body
        return cls(statusCode=status_code, body=text, headers={"Content-Type": JSON_CONTENT_TYPE})

    @classmethod
    def no_content(cls) -> GatewayResponse:
        return cls(statusCode=204, body="")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
