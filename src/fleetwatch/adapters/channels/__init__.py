"""Notification channels implementing NotificationChannel."""

from fleetwatch.adapters.channels.email import EmailChannel
from fleetwatch.adapters.channels.pagerduty import PagerDutyChannel
from fleetwatch.adapters.channels.slack import SlackChannel

__all__ = [
    "EmailChannel",
    "PagerDutyChannel",
    "SlackChannel",
]
