"""Email action implementation.

Sends a message over SMTP using the server configured in settings.
The blocking smtplib call runs in the default executor.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List

from actions.base_action import BaseAction, SchemaField
from app.config import get_settings
from workflow.results import Failure, NodeResult, Success


def _addresses(value: Any) -> List[str]:
    """Accept a list or a comma-separated string of addresses."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


class SendEmailAction(BaseAction):
    """Send an email.

    Config:
        to: Recipient address(es) (required)
        subject: Subject line (required)
        body: Message body
        content_type: "html" | "text" (default: html)
        cc, bcc: Additional recipients
        reply_to: Reply-To header
        from: Sender override (default: SMTP_FROM)
    """

    action_id = "send_email"
    display_name = "Send Email"
    description = "Send an email notification"
    category = "communication"
    icon = "✉️"

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        to = _addresses(config.get("to"))
        subject = config.get("subject")
        if not to or not subject:
            return Failure(message="Email recipient and subject are required", retryable=False)

        settings = get_settings()
        from_addr = config.get("from") or settings.SMTP_FROM
        cc = _addresses(config.get("cc"))
        bcc = _addresses(config.get("bcc"))
        subtype = "plain" if config.get("content_type") == "text" else "html"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = str(subject)
        msg["From"] = from_addr
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)
        if config.get("reply_to"):
            msg["Reply-To"] = str(config["reply_to"])
        msg.attach(MIMEText(str(config.get("body") or ""), subtype))

        recipients = to + cc + bcc

        # Send via SMTP (run in executor to avoid blocking)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self._send_smtp(
                settings.SMTP_HOST,
                settings.SMTP_PORT,
                settings.SMTP_USER,
                settings.SMTP_PASSWORD,
                from_addr,
                recipients,
                msg,
                settings.SMTP_USE_TLS,
            ),
        )

        return Success(output={"sent": True, "recipients": recipients, "subject": str(subject)})

    def _send_smtp(self, host, port, user, password, from_addr, to_addrs, msg, use_tls):
        """Synchronous SMTP send."""
        with smtplib.SMTP(host, port) as server:
            if use_tls:
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, to_addrs, msg.as_string())

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("to", "text", "To", required=True),
            SchemaField("subject", "text", "Subject", required=True),
            SchemaField("body", "richtext", "Body"),
            SchemaField("content_type", "select", "Content Type", default="html", options=["html", "text"]),
            SchemaField("cc", "text", "CC"),
            SchemaField("bcc", "text", "BCC"),
            SchemaField("reply_to", "email", "Reply-To"),
            SchemaField("from", "email", "From"),
        ]


EMAIL_ACTION_TYPES = {
    "send_email": SendEmailAction,
}
