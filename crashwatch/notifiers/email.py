"""
Email SMTP notifier.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from .base import Notifier, NotificationResult
from .templates import SEVERITY_CRITICAL, SEVERITY_HIGH, SEVERITY_RECOVERY, Message

SEVERITY_COLORS = {
    SEVERITY_CRITICAL: "#FF0000",
    SEVERITY_HIGH: "#FFA500",
    SEVERITY_RECOVERY: "#2ECC71",
}


class EmailNotifier(Notifier):
    """Sends notifications via email SMTP."""

    channel = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_address: str,
        to_addresses: list[str],
        min_threshold: int = 5,
    ):
        """
        Initialize email notifier.

        Args:
            smtp_host: SMTP server hostname
            smtp_port: SMTP server port
            smtp_user: SMTP username
            smtp_password: SMTP password
            from_address: Sender email address
            to_addresses: List of recipient email addresses
            min_threshold: Lowest alert threshold routed to email
        """
        super().__init__(min_threshold)
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address
        self.to_addresses = to_addresses

    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_address and self.to_addresses)

    def send(self, message: Message) -> NotificationResult:
        """Send message via email."""
        if not self.is_configured():
            return NotificationResult(
                success=False, channel=self.channel, error="SMTP not configured"
            )
        try:
            mime = self._create_message(message)

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(mime)

            return NotificationResult(success=True, channel=self.channel)

        except smtplib.SMTPAuthenticationError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Authentication failed: {str(e)}",
            )
        except (smtplib.SMTPException, OSError) as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"SMTP error: {str(e)}",
            )

    def _create_message(self, message: Message) -> MIMEMultipart:
        """Create email message."""
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = self.from_address
        mime["To"] = ", ".join(self.to_addresses)

        mime.attach(MIMEText(message.to_text(), "plain"))
        mime.attach(MIMEText(self._create_body(message), "html"))

        return mime

    def _create_body(self, message: Message) -> str:
        """Create HTML email body."""
        color = SEVERITY_COLORS.get(message.severity, "#3498DB")
        banner = ""
        if message.critical:
            banner = f'<div class="banner">CRITICAL: {escape(message.symbol)}</div>'
        rows = "\n".join(
            f"<tr><td class=\"label\">{escape(name)}</td><td>{escape(value)}</td></tr>"
            for name, value in message.fields
        )
        footer = f'<div class="message">{escape(message.footer)}</div>' if message.footer else ""

        return f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 0; padding: 20px; }}
        .banner {{
            background-color: {color};
            color: #fff;
            font-weight: bold;
            padding: 10px;
            margin-bottom: 10px;
        }}
        .alert-box {{
            border-left: 4px solid {color};
            padding: 15px;
            background-color: #f9f9f9;
            margin-bottom: 20px;
        }}
        .title {{ font-size: 22px; font-weight: bold; color: {color}; }}
        .label {{ color: #888; padding-right: 12px; }}
        .message {{ margin: 15px 0; color: #555; }}
        .meta {{ color: #888; font-size: 12px; }}
    </style>
</head>
<body>
    {banner}
    <div class="alert-box">
        <div class="title">{escape(message.title)}</div>
        <table>
{rows}
        </table>
        {footer}
        <div class="meta">Time: {escape(message.time_label)}</div>
    </div>
</body>
</html>
"""
