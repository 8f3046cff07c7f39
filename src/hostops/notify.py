"""Alert mail through the host's mail user agent."""

from __future__ import annotations

from hostops.errors import HostOpsError
from hostops.steps import StepContext

__all__ = ["send_alert"]


def send_alert(context: StepContext, subject: str, body: str) -> bool:
    """
    Mail an alert to ``config.alert_email``.

    Delivery problems are logged as warnings and never fail the calling
    step; a missed alert must not hide the condition that raised it.

    Returns:
        True if the mail command accepted the message
    """
    recipient = context.config.alert_email
    if not recipient:
        return False

    try:
        result = context.run(
            context.config.mail_command,
            ["-s", subject, recipient],
            input_text=body,
        )
        result.check(f"Sending alert to {recipient}")
    except HostOpsError as e:
        context.warning("Alert not sent to %s: %s", recipient, e)
        return False

    context.info("Alert sent to %s: %s", recipient, subject)
    return True
