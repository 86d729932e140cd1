"""
Engine exception hierarchy.

Store failures on the ingestion path propagate; goal and funnel-batch
failures are logged and isolated by the engines that catch them.
"""
from typing import Any


class BeaconError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationFailure(BeaconError):
    """A goal condition or funnel step definition is malformed."""


class StoreUnavailableError(BeaconError):
    """The durable store rejected a read or write."""


class FunnelNotFoundError(BeaconError):
    """No funnel with the given id exists for the site."""


class EventNotFoundError(BeaconError):
    """No event with the given id exists for the site."""


class NotificationDeliveryError(BeaconError):
    """A webhook or Slack delivery failed or timed out."""
