"""Request models for creating and patching alerts."""

from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .models import (
    AlertConditions,
    AlertPriority,
    AlertSchedule,
    AlertStatus,
    AlertType,
    NotificationChannel,
    QuietHours,
    StockStatus,
    hhmm_to_minutes,
)

HHMM_PATTERN = r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$"


def _check_expiry(value: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
    # "now" is only known when validated through the service
    now = (info.context or {}).get("now")
    if value is not None and now is not None and value <= now:
        raise ValueError("Expiration date must be in the future")
    return value


class QuietHoursRequest(BaseModel):
    """Quiet window requested for an alert; must not wrap past midnight."""

    model_config = ConfigDict(extra="forbid")

    start: str = Field(..., description="Window start, HH:MM", pattern=HHMM_PATTERN)
    end: str = Field(..., description="Window end, HH:MM", pattern=HHMM_PATTERN)

    @model_validator(mode="after")
    def validate_order(self) -> "QuietHoursRequest":
        if hhmm_to_minutes(self.start) >= hhmm_to_minutes(self.end):
            raise ValueError("Quiet hours start time must be before end time")
        return self

    def to_domain(self) -> QuietHours:
        return QuietHours(start=self.start, end=self.end)


class ConditionsRequest(BaseModel):
    """Trigger criteria supplied by the user."""

    model_config = ConfigDict(extra="forbid")

    target_price: Optional[float] = Field(None, description="Target price in yen", gt=0)
    percentage_drop: Optional[float] = Field(None, ge=0, le=100)
    historical_low: bool = False
    platforms: Optional[List[str]] = None
    min_rating: Optional[float] = Field(None, ge=1, le=5)
    stock_status: Optional[StockStatus] = None

    def to_domain(self) -> AlertConditions:
        return AlertConditions(**self.model_dump())


class ScheduleRequest(BaseModel):
    """Dispatch schedule supplied by the user."""

    model_config = ConfigDict(extra="forbid")

    active: bool = True
    quiet_hours: Optional[QuietHoursRequest] = None
    max_alerts_per_day: int = Field(10, gt=0)
    cooldown_minutes: int = Field(60, ge=0)

    def to_domain(self) -> AlertSchedule:
        return AlertSchedule(
            active=self.active,
            quiet_hours=self.quiet_hours.to_domain() if self.quiet_hours else None,
            max_alerts_per_day=self.max_alerts_per_day,
            cooldown_minutes=self.cooldown_minutes,
        )


class AlertCreationRequest(BaseModel):
    """Request to create an alert. Title and message are generated."""

    model_config = ConfigDict(extra="forbid")
    UNKNOWN_FIELD_MESSAGE: ClassVar[str] = "Unknown field '{name}'"

    user_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    type: AlertType
    conditions: ConditionsRequest = Field(default_factory=ConditionsRequest)
    priority: Optional[AlertPriority] = Field(
        None, description="Derived from type and conditions when omitted"
    )
    channels: Optional[List[NotificationChannel]] = Field(
        None, description="Defaults per alert type when omitted", min_length=1
    )
    schedule: Optional[ScheduleRequest] = None
    expires_at: Optional[datetime] = None
    alert_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v, info: ValidationInfo):
        return _check_expiry(v, info)


class AlertPatch(BaseModel):
    """
    User-initiated alert mutation.

    Only the fields declared here can change; anything else is rejected.
    A field left as None is not touched.
    """

    model_config = ConfigDict(extra="forbid")
    UNKNOWN_FIELD_MESSAGE: ClassVar[str] = "Field '{name}' cannot be updated"

    priority: Optional[AlertPriority] = None
    channels: Optional[List[NotificationChannel]] = Field(None, min_length=1)
    schedule: Optional[ScheduleRequest] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    message: Optional[str] = Field(None, min_length=1, max_length=1000)
    alert_data: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    status: Optional[AlertStatus] = None

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v, info: ValidationInfo):
        return _check_expiry(v, info)

    def changed_fields(self) -> Dict[str, Any]:
        """Fields set on the patch, nested requests converted to domain objects."""
        changes = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, ScheduleRequest):
                value = value.to_domain()
            changes[name] = value
        return changes
