"""Transport-neutral message envelopes."""

from typing import Optional

from pydantic import BaseModel


class InboundMessage(BaseModel):
    sender: str
    text: str = ""
    attachment_url: Optional[str] = None


class OutboundMessage(BaseModel):
    target: str
    body: str
    media_url: Optional[str] = None
