"""SMTP email channel.

smtplib is blocking, so delivery runs in a worker thread through
``asyncio.to_thread``.
"""

import asyncio
import html
import logging
import smtplib
from collections.abc import Callable, Sequence
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from fleetwatch.adapters.channels.base import (
    DEFAULT_TIMEOUT,
    format_timestamp,
    severity_color,
)
from fleetwatch.core.errors import NotificationError
from fleetwatch.core.models import Alert

logger = logging.getLogger(__name__)

_ROW = """
        <tr><td class="label">{label}:</td><td>{value}</td></tr>"""

_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; background-color: #f5f5f5; }}
    .header {{ background-color: {color}; color: white; padding: 20px; }}
    .content {{ padding: 20px; background-color: white; }}
    .label {{ font-weight: bold; width: 120px; }}
    .footer {{ padding: 20px; font-size: 12px; color: #666; }}
  </style>
</head>
<body>
  <div class="header">
    <h1>{title}</h1>
    <p>Service: {service} | Severity: {severity}</p>
  </div>
  <div class="content">
    <p>{description}</p>
    <table>{rows}
    </table>
  </div>
  <div class="footer">
    <p>This alert was generated by the {source} monitoring system.</p>
  </div>
</body>
</html>
"""


def subject_for(alert: Alert) -> str:
    return f"[{alert.severity}] {alert.title}"


def render_html(alert: Alert, source: str = "fleetwatch") -> str:
    """Render the HTML body for an alert.

    Value and threshold rows are omitted when the alert carries none.
    """
    details: list[tuple[str, object]] = [
        ("Alert Type", alert.alert_type),
        ("Service", alert.service_name),
        ("Severity", alert.severity),
    ]
    if alert.value is not None:
        details.append(("Current Value", alert.value))
    if alert.threshold is not None:
        details.append(("Threshold", alert.threshold))
    details.append(("Timestamp", format_timestamp()))

    rows = "".join(
        _ROW.format(label=html.escape(label), value=html.escape(str(value)))
        for label, value in details
    )
    return _TEMPLATE.format(
        color=severity_color(alert.severity),
        title=html.escape(alert.title),
        service=html.escape(alert.service_name),
        severity=html.escape(str(alert.severity)),
        description=html.escape(alert.description),
        rows=rows,
        source=html.escape(source),
    )


class EmailChannel:
    """Sends alerts as HTML email through an SMTP relay."""

    name = "email"

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
        recipients: Sequence[str] = (),
        enabled: bool = True,
        use_tls: bool = True,
        source: str = "fleetwatch",
        timeout: float = DEFAULT_TIMEOUT,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._sender = sender
        self._recipients = list(recipients)
        self._enabled = enabled
        self._use_tls = use_tls
        self._source = source
        self._timeout = timeout
        self._smtp_factory = smtp_factory

    @property
    def enabled(self) -> bool:
        return (
            self._enabled
            and bool(self._host)
            and bool(self._sender)
            and bool(self._recipients)
        )

    def build_message(self, alert: Alert) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject_for(alert)
        message["From"] = self._sender or ""
        message["To"] = ", ".join(self._recipients)
        message.attach(MIMEText(render_html(alert, self._source), "html"))
        return message

    def _deliver(self, message: MIMEMultipart) -> None:
        server = self._smtp_factory(self._host, self._port, timeout=self._timeout)
        try:
            if self._use_tls:
                server.starttls()
            if self._username and self._password:
                server.login(self._username, self._password)
            server.sendmail(self._sender, self._recipients, message.as_string())
        finally:
            server.quit()

    async def send(self, alert: Alert) -> None:
        if not self.enabled:
            raise NotificationError("email channel is not configured")
        message = self.build_message(alert)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"email delivery failed for alert {alert.id}: {e}"
            ) from e
        logger.info(
            "Email notification sent",
            extra={"alert_id": alert.id, "subject": message["Subject"]},
        )
