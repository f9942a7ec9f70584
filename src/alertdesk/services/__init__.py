"""Service layer for business logic encapsulation."""

from .alerts import AlertService

__all__ = ["AlertService"]
