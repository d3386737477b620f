"""schemas/webhooks.py - Typed view of inbound payment gateway events."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class WebhookEventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: Optional[str] = None
    type: str
    created: Optional[int] = None
    livemode: Optional[bool] = None
    data: WebhookEventData = Field(default_factory=WebhookEventData)

    @property
    def obj(self) -> Dict[str, Any]:
        return self.data.object


class WebhookAck(BaseModel):
    received: bool = True
