import logging
import re
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr, parseaddr
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

import httpx
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Email, Mail

from ..config import settings

logger = logging.getLogger(__name__)

DEFAULT_FROM_ADDRESS = "noreply@sandpiperrun.com"
LOGGED_RECIPIENTS = 3


@dataclass
class SendResult:
    """What a mail backend reported for one hand-off."""

    backend: str
    status_code: Optional[int]
    request_id: Optional[str]
    error: Optional[str]
    recipient_count: int = 0

    @property
    def accepted(self) -> bool:
        return self.error is None


class MailTransport(Protocol):
    def __call__(self, to: List[str], subject: str, html: str, from_address: Optional[str] = None) -> SendResult:
        ...


@dataclass
class OutgoingEmail:
    subject: str
    html: str
    recipients: List[str]
    from_address: str
    display_name: str
    reply_to: Optional[str]

    @property
    def from_header(self) -> str:
        return formataddr((self.display_name, self.from_address))

    def accepted_by(self, backend: str, status_code: Optional[int], request_id: Optional[str] = None) -> SendResult:
        return SendResult(
            backend=backend,
            status_code=status_code,
            request_id=request_id,
            error=None,
            recipient_count=len(self.recipients),
        )


def _redact_address(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    local, _, domain = address.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***{local[-1:] if len(local) > 2 else ''}@{domain}"


def _backend_name() -> str:
    return (settings.email_backend or "local").strip().strip("'\"").lower()


def log_email_configuration() -> None:
    logger.info(
        "Resident mail backend=%s from_configured=%s reply_to_configured=%s sendgrid_key=%s resend_key=%s smtp_host=%s",
        _backend_name(),
        bool(settings.email_from_address),
        bool(settings.email_reply_to),
        bool(settings.sendgrid_api_key),
        bool(settings.resend_api_key),
        bool(settings.email_host),
    )


def normalize_recipients(recipients: Iterable[Optional[str]]) -> List[str]:
    """Drop blanks and case-insensitive duplicates, keeping first-seen spelling."""
    unique: Dict[str, str] = {}
    for address in recipients:
        cleaned = (address or "").strip()
        if cleaned:
            unique.setdefault(cleaned.lower(), cleaned)
    return list(unique.values())


def resolve_sender(from_address: Optional[str] = None) -> Tuple[str, str]:
    """Return ``(address, display_name)``; accepts ``"Name <addr>"`` overrides."""
    display_name = settings.email_from_name or settings.community_name
    name, address = parseaddr(from_address or "")
    if address:
        return address, name or display_name
    configured = str(settings.email_from_address) if settings.email_from_address else DEFAULT_FROM_ADDRESS
    return configured, display_name


def _response_id(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    if not isinstance(headers, Mapping):
        return None
    return headers.get("X-Message-Id") or headers.get("X-Request-Id")


def _deliver_local(mail: OutgoingEmail) -> SendResult:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    slug = re.sub(r"[^A-Za-z0-9_-]+", "_", mail.subject).strip("_") or "email"
    output_dir = Path(settings.email_output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{stamp}_{slug}.html"
    path.write_text(
        f"<!-- From: {mail.from_header} -->\n"
        f"<!-- Subject: {mail.subject} -->\n"
        f"<!-- Recipients: {', '.join(mail.recipients)} -->\n"
        f"{mail.html}"
    )
    logger.info("Resident email written to %s", path)
    return mail.accepted_by("local", 200)


def _deliver_sendgrid(mail: OutgoingEmail) -> SendResult:
    if not settings.sendgrid_api_key:
        raise RuntimeError("SendGrid backend requires SENDGRID_API_KEY and EMAIL_FROM_ADDRESS.")
    message = Mail(
        from_email=Email(email=mail.from_address, name=mail.display_name),
        to_emails=mail.recipients,
        subject=mail.subject,
        html_content=mail.html,
    )
    if mail.reply_to:
        message.reply_to = Email(email=mail.reply_to)
    try:
        response = SendGridAPIClient(settings.sendgrid_api_key).send(message)
    except Exception as exc:
        status_code = getattr(exc, "status_code", None)
        logger.exception("SendGrid rejected resident email (status=%s body=%s).", status_code, getattr(exc, "body", None))
        return SendResult(
            backend="sendgrid",
            status_code=status_code,
            request_id=_response_id(getattr(exc, "headers", None)),
            error=str(exc),
        )
    request_id = _response_id(response.headers)
    logger.info("SendGrid accepted resident email for %d recipients (id=%s).", len(mail.recipients), request_id)
    return mail.accepted_by("sendgrid", response.status_code, request_id)


def _resend_client() -> httpx.Client:
    return httpx.Client(timeout=httpx.Timeout(30.0))


def _deliver_resend(mail: OutgoingEmail) -> SendResult:
    if not settings.resend_api_key:
        raise RuntimeError("Resend backend requires RESEND_API_KEY.")
    payload = {"from": mail.from_header, "to": mail.recipients, "subject": mail.subject, "html": mail.html}
    if settings.email_reply_to:
        payload["reply_to"] = str(settings.email_reply_to)
    with _resend_client() as client:
        response = client.post(
            settings.resend_api_url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
        )
    if response.is_error:
        logger.error("Resend rejected resident email (status=%s): %s", response.status_code, response.text)
        return SendResult(
            backend="resend",
            status_code=response.status_code,
            request_id=None,
            error=f"Resend API responded with {response.status_code}: {response.text}",
        )
    try:
        body = response.json()
    except ValueError:
        body = None
    message_id = body.get("id") if isinstance(body, dict) else None
    logger.info("Resend accepted resident email for %d recipients (id=%s).", len(mail.recipients), message_id)
    return mail.accepted_by("resend", response.status_code, message_id)


def _deliver_smtp(mail: OutgoingEmail) -> SendResult:
    if not settings.email_host:
        raise RuntimeError("SMTP backend requires EMAIL_HOST.")
    if not (settings.email_host_user and settings.email_host_password):
        raise RuntimeError("SMTP backend requires EMAIL_HOST_USER and EMAIL_HOST_PASSWORD.")
    message = EmailMessage()
    message["Subject"] = mail.subject
    message["From"] = mail.from_header
    message["To"] = ", ".join(mail.recipients)
    if mail.reply_to:
        message["Reply-To"] = mail.reply_to
    message.set_content("This notice is formatted as HTML. Please open it in an HTML-capable mail client.")
    message.add_alternative(mail.html, subtype="html")

    with smtplib.SMTP(settings.email_host, settings.email_port or 587) as connection:
        if settings.email_use_tls:
            connection.starttls(context=ssl.create_default_context())
        connection.login(settings.email_host_user, settings.email_host_password)
        connection.send_message(message)
    logger.info("SMTP relay accepted resident email for %d recipients.", len(mail.recipients))
    return mail.accepted_by("smtp", 250)


_BACKENDS: Dict[str, Callable[[OutgoingEmail], SendResult]] = {
    "local": _deliver_local,
    "sendgrid": _deliver_sendgrid,
    "resend": _deliver_resend,
    "smtp": _deliver_smtp,
    "sendgrid_smtp": _deliver_smtp,
}


def send_mail(to: Iterable[str], subject: str, html: str, from_address: Optional[str] = None) -> SendResult:
    """Hand one HTML message to the configured backend; reports accept or reject."""
    backend = _backend_name()
    address, display_name = resolve_sender(from_address)
    mail = OutgoingEmail(
        subject=subject,
        html=html,
        recipients=normalize_recipients(to),
        from_address=address,
        display_name=display_name,
        reply_to=str(settings.email_reply_to) if settings.email_reply_to else address,
    )
    shown = [_redact_address(addr) for addr in mail.recipients[:LOGGED_RECIPIENTS]]
    logger.info(
        "Sending resident email backend=%s from=%s to=%s (%d total) subject_len=%d",
        backend,
        _redact_address(address),
        shown,
        len(mail.recipients),
        len(subject),
    )
    if not mail.recipients:
        logger.info("Resident email skipped: no deliverable addresses.")
        return SendResult(backend=backend, status_code=None, request_id=None, error="No recipients provided.")

    deliver = _BACKENDS.get(backend)
    if deliver is None:
        logger.warning("Unknown EMAIL_BACKEND '%s'; writing to the local outbox instead.", backend)
        deliver = _deliver_local
    try:
        return deliver(mail)
    except Exception as exc:
        logger.exception("Resident email failed on backend=%s.", backend)
        return SendResult(backend=backend, status_code=None, request_id=None, error=str(exc))
