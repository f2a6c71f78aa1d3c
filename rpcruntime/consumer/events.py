"""Queue batch event envelope."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

__all__ = ["QueueEvent", "QueueMessage"]


class QueueMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_id: str = Field("", validation_alias=AliasChoices("messageId", "MessageId", "message_id"))
    body: str = Field("", validation_alias=AliasChoices("body", "Body"))
    event_source: str = Field(
        "", validation_alias=AliasChoices("eventSource", "EventSource", "event_source")
    )

    def body_bytes(self) -> bytes:
        return self.body.encode("utf-8")


class QueueEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    records: list[QueueMessage] = Field(
        default_factory=list, validation_alias=AliasChoices("Records", "records")
    )
