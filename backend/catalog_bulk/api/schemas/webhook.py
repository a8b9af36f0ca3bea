"""Webhook subscription schemas."""

from datetime import datetime

from pydantic import AnyHttpUrl, BaseModel, Field, field_serializer

from catalog_bulk.services.notifications import JOB_FINISHED_EVENT


class WebhookBase(BaseModel):
    url: AnyHttpUrl
    event: str = Field(JOB_FINISHED_EVENT, description="Event type to subscribe to")
    enabled: bool = True


class WebhookCreate(WebhookBase):
    secret: str | None = Field(None, description="Optional signing secret")


class WebhookRead(WebhookBase):
    id: int
    last_status: str | None = None
    last_response_ms: int | None = None
    created_at: datetime | None = None

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return value.isoformat()

    model_config = {"from_attributes": True}
