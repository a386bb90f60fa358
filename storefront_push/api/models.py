"""Request and response models for the push delivery HTTP surface."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from storefront_push.notifications.contracts import PREFERENCE_FLAGS, DeliveryRequest
from storefront_push.resilience.circuit_breaker import CircuitState


class DeliveryRequestPayload(BaseModel):
  """One notification to send immediately."""

  title: str = Field(min_length=1, max_length=256)
  body: str = Field(min_length=1, max_length=2048)
  notification_type: str = Field(default="general", min_length=1, max_length=64)
  user_ids: list[str] = Field(default_factory=list, max_length=10000)
  send_to_admins: bool = False
  send_to_delivery: bool = False
  preference_filter: str | None = None
  url: str | None = Field(default=None, max_length=2048)
  icon: str | None = Field(default=None, max_length=2048)
  image_url: str | None = Field(default=None, max_length=2048)
  data: dict[str, Any] = Field(default_factory=dict)
  broadcast_id: str | None = None
  model_config = ConfigDict(extra="forbid")

  @field_validator("preference_filter")
  @classmethod
  def validate_preference_filter(cls, value: str | None) -> str | None:
    if value is not None and value not in PREFERENCE_FLAGS:
      raise PydanticCustomError("preference_filter_unknown", "preference_filter must be one of: {allowed}", {"allowed": ", ".join(sorted(PREFERENCE_FLAGS))})
    return value

  def to_request(self) -> DeliveryRequest:
    return DeliveryRequest(
      title=self.title,
      body=self.body,
      notification_type=self.notification_type,
      user_ids=tuple(dict.fromkeys(self.user_ids)),
      send_to_admins=self.send_to_admins,
      send_to_delivery=self.send_to_delivery,
      preference_filter=self.preference_filter,
      url=self.url,
      icon=self.icon,
      image_url=self.image_url,
      data=self.data,
      broadcast_id=self.broadcast_id,
    )


class DeliveryResponse(BaseModel):
  success: bool
  sent: int
  failed: int
  total: int


class TriggerPayload(BaseModel):
  """Selects which scheduler rules run; `type` is accepted as an alias of `mode`."""

  mode: Literal["all", "pending", "daily_reminders", "profit_summary", "scheduled"] = Field(default="all", validation_alias=AliasChoices("mode", "type"))
  model_config = ConfigDict(extra="forbid")


class TriggerResponse(BaseModel):
  success: bool
  processed: dict[str, int]
  errors: list[str]
  timestamp: str


class ForceStatePayload(BaseModel):
  state: CircuitState
  model_config = ConfigDict(extra="forbid")
