"""WhatsApp message models."""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class MetaTextBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    body: str


class MetaMessage(BaseModel):
    """One element of value.messages[] in a Meta webhook.

    Only the fields the pipeline reads are declared; everything else
    (timestamp, context, media objects) is ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    from_: str | None = Field(default=None, alias="from")
    type: str = "unknown"
    text: MetaTextBody | None = None


@dataclass(frozen=True)
class InboundMessage:
    """Normalized inbound text message.

    ATTENTION PII:
    - `sender_id` (phone number) and `text` are PII
    - Exists only in memory for one webhook invocation
    - NEVER log raw; use mask_phone / text length
    """

    message_id: str
    sender_id: str
    text: str
    kind: str
