from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookEnvelope(BaseModel):
    type: str = Field(min_length=1)
    data: dict[str, Any]
    object: str | None = None

    model_config = ConfigDict(extra="ignore")


class ClerkEmailAddress(BaseModel):
    id: str | None = None
    email_address: str | None = None

    model_config = ConfigDict(extra="ignore")


class ClerkUserData(BaseModel):
    id: str = Field(min_length=1)
    email_addresses: list[ClerkEmailAddress] = Field(default_factory=list)
    primary_email_address_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None
    deleted: bool | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("email_addresses", mode="before")
    @classmethod
    def null_addresses_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class WebhookAckOut(BaseModel):
    received: bool = True
    action: str | None = None
    duplicate: bool | None = None
    ignored: bool | None = None
    event_type: str | None = None
