import asyncio
import os
import re
import smtplib
import ssl
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from crm_otp.platform.config import Settings
from crm_otp.platform.logger import get_logger

logger = get_logger("email_service")

current_dir = os.path.dirname(os.path.abspath(__file__))
template_dir = os.path.join(current_dir, "../../features/otp/templates")

if not os.path.exists(template_dir):
    template_dir = os.path.join(os.getcwd(), "crm_otp/features/otp/templates")


class TemplateRenderer:
    """Renders the HTML email bodies from the Jinja2 templates directory."""

    def __init__(self, directory: str = template_dir):
        self.env = Environment(
            loader=FileSystemLoader(directory),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, template_name: str, **context) -> str:
        return self.env.get_template(template_name).render(**context)


def build_message(
    *,
    to_email: str,
    subject: str,
    html: str,
    from_address: Optional[str],
    from_name: str,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, from_address or ""))
    msg["To"] = to_email
    msg["Message-ID"] = make_msgid(domain=_sender_domain(from_address))

    msg.attach(MIMEText(html, "html", "utf-8"))
    return msg


def _sender_domain(address: Optional[str]) -> Optional[str]:
    if address and "@" in address:
        return address.rsplit("@", 1)[1]
    return None


class SMTPTransport:
    """Delivers messages over SMTP; the blocking smtplib session runs in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        encryption: str = "tls",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.encryption = encryption
        self.timeout = timeout

    async def send(self, message: MIMEMultipart) -> str:
        await asyncio.to_thread(self._send_sync, message)
        return message["Message-ID"]

    def _send_sync(self, message: MIMEMultipart) -> None:
        recipients = [message["To"]]
        sender = self.username or message["From"]

        if self.port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(sender, recipients, message.as_string())
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()

                if str(self.encryption).upper() in ["TLS", "TRUE"]:
                    server.starttls()
                    server.ehlo()

                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(sender, recipients, message.as_string())


OTP_CODE_PATTERN = re.compile(r'<div class="otp-code">\s*(\d{6})\s*</div>')


class MockTransport:
    """Development transport: logs the message instead of sending it."""

    def __init__(self):
        self.sent: list[MIMEMultipart] = []
        logger.info("Using mock email transport; messages are logged, not delivered")

    async def send(self, message: MIMEMultipart) -> str:
        self.sent.append(message)

        logger.info(
            f"MOCK EMAIL from={message['From']} to={message['To']} subject={message['Subject']}"
        )
        body = message.get_payload(0).get_payload(decode=True).decode("utf-8")
        match = OTP_CODE_PATTERN.search(body)
        if match:
            logger.info(f"MOCK EMAIL OTP code: {match.group(1)}")

        return f"mock-{int(time.time() * 1000)}@localhost"


def build_transport(settings: Settings):
    """Pick the transport for the configured mailer."""
    if settings.MAIL_MAILER == "mock":
        return MockTransport()

    if settings.ENVIRONMENT != "production" and not settings.smtp_configured:
        logger.warning("SMTP_USER/SMTP_PASS not configured, falling back to mock email transport")
        return MockTransport()

    return SMTPTransport(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USER,
        password=settings.SMTP_PASS,
        encryption=settings.MAIL_ENCRYPTION,
        timeout=settings.MAIL_TIMEOUT,
    )
