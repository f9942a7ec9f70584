"""Request parsing and the user-facing alert state machine."""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .exceptions import AlertValidationError, InvalidStatusTransitionError
from .models import Alert, AlertStatus
from .requests import AlertPatch

RequestModel = TypeVar("RequestModel", bound=BaseModel)

# User-initiated status edits; engine-driven transitions never go through a patch
ALLOWED_USER_TRANSITIONS = {
    AlertStatus.PENDING: {AlertStatus.CANCELLED},
    AlertStatus.FAILED: {AlertStatus.CANCELLED, AlertStatus.PENDING},
    AlertStatus.SENT: set(),
    AlertStatus.CANCELLED: set(),
}

FIELD_MESSAGES = {
    "target_price": "Target price must be positive",
    "percentage_drop": "Percentage drop must be between 0 and 100",
    "min_rating": "Minimum rating must be between 1 and 5",
    "start": "Quiet hours must use HH:MM format",
    "end": "Quiet hours must use HH:MM format",
    "channels": "At least one notification channel is required",
    "max_alerts_per_day": "Maximum alerts per day must be positive",
    "cooldown_minutes": "Cooldown minutes must not be negative",
    "title": "Title must be between 1 and 200 characters",
    "message": "Message must be between 1 and 1000 characters",
    "user_id": "User id is required",
    "product_id": "Product id is required",
}

CONSTRAINT_ERRORS = {
    "greater_than",
    "greater_than_equal",
    "less_than",
    "less_than_equal",
    "too_short",
    "too_long",
    "string_too_short",
    "string_too_long",
    "string_pattern_mismatch",
}


def describe_errors(model: Type[BaseModel], error: PydanticValidationError) -> List[str]:
    """Turn pydantic errors into user-facing messages, in field order, deduplicated."""
    messages: List[str] = []
    for item in error.errors():
        loc = item["loc"]
        name = str(loc[-1]) if loc else ""

        if item["type"] == "value_error":
            message = str(item["ctx"]["error"])
        elif item["type"] == "extra_forbidden":
            message = model.UNKNOWN_FIELD_MESSAGE.format(name=name)
        elif item["type"] in CONSTRAINT_ERRORS and name in FIELD_MESSAGES:
            message = FIELD_MESSAGES[name]
        else:
            message = f"{'.'.join(str(part) for part in loc)}: {item['msg']}"

        if message not in messages:
            messages.append(message)
    return messages


def parse_request(
    model: Type[RequestModel],
    data: Union[RequestModel, Mapping[str, Any]],
    now: datetime,
) -> RequestModel:
    """
    Validate ``data`` as ``model`` against the current time.

    Already-built models are validated again so the clock-dependent rules
    (expiration in the future) always apply.

    Raises:
        AlertValidationError: with every problem found
    """
    payload: Dict[str, Any] = (
        data.model_dump(exclude_unset=True) if isinstance(data, BaseModel) else dict(data)
    )
    try:
        return model.model_validate(payload, context={"now": now})
    except PydanticValidationError as e:
        raise AlertValidationError(describe_errors(model, e)) from e


def validate_patch(alert: Alert, patch: AlertPatch) -> None:
    """
    Check a parsed patch against the alert state machine.

    Raises:
        InvalidStatusTransitionError: status edit not reachable from the current state
        AlertValidationError: field edits on a sent or cancelled alert
    """
    if patch.status is not None and patch.status != alert.status:
        allowed = ALLOWED_USER_TRANSITIONS[alert.status]
        if patch.status not in allowed:
            raise InvalidStatusTransitionError(alert.status.value, patch.status.value)
        if patch.status == AlertStatus.PENDING and not alert.can_retry():
            raise InvalidStatusTransitionError(alert.status.value, patch.status.value)

    changes = patch.changed_fields()
    changes.pop("status", None)
    if changes and alert.status in (AlertStatus.SENT, AlertStatus.CANCELLED):
        raise AlertValidationError(
            [f"Alert in status '{alert.status.value}' can no longer be modified"]
        )
