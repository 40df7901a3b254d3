import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

import httpx

from servicehub.config import Settings, settings

logger = logging.getLogger(__name__)


class EmailTransportError(RuntimeError):
    pass


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str | None = None
    from_email: str | None = None
    from_name: str | None = None
    reply_to: str | None = None
    to_name: str | None = None


def _build_email_message(email: OutboundEmail, from_email: str, from_name: str | None, message_id: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = email.subject
    msg["From"] = formataddr((from_name or "", from_email))
    msg["To"] = formataddr((email.to_name or "", email.to))
    msg["Message-ID"] = message_id
    if email.reply_to:
        msg["Reply-To"] = email.reply_to
    if email.text:
        msg.attach(MIMEText(email.text, "plain"))
    msg.attach(MIMEText(email.html, "html"))
    return msg


def _create_smtp_client(host: str, port: int, use_ssl: bool, timeout: float):
    if use_ssl:
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    return smtplib.SMTP(host, port, timeout=timeout)


class SmtpEmailTransport:
    provider = "smtp"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        use_ssl: bool = False,
        from_email: str = "noreply@example.com",
        from_name: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def send(self, email: OutboundEmail) -> str:
        from_email = email.from_email or self.from_email
        message_id = make_msgid(domain=from_email.split("@")[-1] or None)
        msg = _build_email_message(email, from_email, email.from_name or self.from_name, message_id)
        try:
            server = _create_smtp_client(self.host, self.port, self.use_ssl, self.timeout)
            try:
                if self.use_tls and not self.use_ssl:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                refused = server.sendmail(from_email, email.to, msg.as_string())
            finally:
                server.quit()
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed for %s: %s", email.to, exc)
            raise EmailTransportError("SMTP authentication failed") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailTransportError(str(exc) or exc.__class__.__name__) from exc
        if refused:
            raise EmailTransportError(f"SMTP refused recipients: {refused}")
        return message_id


class HttpEmailTransport:
    """Posts rendered messages to an HTTP email API."""

    provider = "http"

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        from_email: str = "noreply@example.com",
        from_name: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self._client = client

    def send(self, email: OutboundEmail) -> str:
        payload = {
            "to": email.to,
            "toName": email.to_name,
            "from": email.from_email or self.from_email,
            "fromName": email.from_name or self.from_name,
            "replyTo": email.reply_to,
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            if self._client is not None:
                response = self._client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            else:
                response = httpx.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise EmailTransportError(f"Email API timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise EmailTransportError(f"Email API returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise EmailTransportError(str(exc) or exc.__class__.__name__) from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success") is False:
            raise EmailTransportError(str(body.get("error") or "Email API rejected message"))
        message_id = body.get("id") or body.get("messageId") if isinstance(body, dict) else None
        return str(message_id) if message_id else ""


def build_transport(config: Settings = settings):
    if config.email_provider == "http":
        if not config.email_api_url:
            raise ValueError("EMAIL_API_URL is required when EMAIL_PROVIDER=http")
        return HttpEmailTransport(
            api_url=config.email_api_url,
            api_key=config.email_api_key,
            from_email=config.email_from,
            from_name=config.email_from_name,
            timeout=config.email_timeout_seconds,
        )
    return SmtpEmailTransport(
        host=config.smtp_host,
        port=config.smtp_port,
        username=config.smtp_username,
        password=config.smtp_password,
        use_tls=config.smtp_use_tls,
        use_ssl=config.smtp_use_ssl,
        from_email=config.email_from,
        from_name=config.email_from_name,
        timeout=config.email_timeout_seconds,
    )
