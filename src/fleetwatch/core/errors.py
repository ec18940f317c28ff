"""Exception hierarchy for fleetwatch."""


class FleetwatchError(Exception):
    """Base class for all fleetwatch errors."""


class ConfigurationError(FleetwatchError):
    """Settings are missing or invalid. Raised at startup."""


class StoreError(FleetwatchError):
    """The durable store rejected or failed an operation."""


class DuplicateAlertError(StoreError):
    """An open alert already exists for the dedup key."""

    def __init__(self, service_name: str, alert_type: str) -> None:
        super().__init__(
            f"open alert already exists for {service_name}/{alert_type}"
        )
        self.service_name = service_name
        self.alert_type = alert_type


class AlertNotFoundError(FleetwatchError):
    """No alert exists with the requested id."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(f"alert not found: {alert_id}")
        self.alert_id = alert_id


class InvalidTransitionError(FleetwatchError):
    """The requested status change is not allowed from the current status."""


class NotificationError(FleetwatchError):
    """A notification channel failed to deliver."""


class UnknownChannelError(NotificationError):
    """No channel is registered under the requested name."""


class ChannelDisabledError(ConfigurationError):
    """The requested channel exists but is not enabled or not configured."""


class RosterError(FleetwatchError):
    """The service roster could not be read."""
