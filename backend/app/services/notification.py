from __future__ import annotations

import base64
import mimetypes
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import parseaddr
from pathlib import Path
from typing import Optional, Sequence
from uuid import UUID

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.logging_setup import logger
from app.services.invoice import InvoiceView
from app.services.pdf import format_amount


@dataclass
class EmailConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    sender: str
    starttls: bool


@dataclass
class SendGridConfig:
    api_key: str
    sender: str | None


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class CompanyBrand:
    name: str
    address: str = ""
    logo: str = ""


@dataclass(frozen=True)
class InvoiceEmail:
    """Everything the mailer needs: the invoice snapshot plus its resolved recipient."""

    invoice: InvoiceView
    recipient_email: str
    recipient_name: str
    tenant_id: UUID
    company: CompanyBrand


class EmailService:
    def __init__(
        self,
        email_config: Optional[EmailConfig] = None,
        template_root: Path | None = None,
        sendgrid_config: Optional[SendGridConfig] = None,
        email_backend: str = "smtp",
    ) -> None:
        self.email_config = email_config
        self.sendgrid_config = sendgrid_config
        normalized_backend = (email_backend or "smtp").strip().lower()
        self.email_backend = normalized_backend if normalized_backend in {"smtp", "sendgrid"} else "smtp"
        if self.sendgrid_config and self.email_backend != "sendgrid":
            self.email_backend = "sendgrid"
        self.template_root = template_root or Path(__file__).resolve().parent.parent / "templates"
        self.template_env = Environment(
            loader=FileSystemLoader(self.template_root),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.template_env.filters["amount"] = format_amount

    @classmethod
    def from_settings(cls, settings) -> "EmailService":
        service = cls()
        service.apply_email_settings(settings)
        return service

    def apply_email_settings(self, settings) -> None:
        preferred = (getattr(settings, "email_backend", "smtp") or "smtp").strip().lower()
        sender = getattr(settings, "smtp_sender", None)
        sendgrid_key = getattr(settings, "sendgrid_api_key", None)
        smtp_host = getattr(settings, "smtp_host", None)
        smtp_port = getattr(settings, "smtp_port", None)

        def use_sendgrid() -> bool:
            if sendgrid_key and sender:
                self.configure_sendgrid(api_key=sendgrid_key, sender=sender)
                return True
            return False

        def use_smtp() -> bool:
            if smtp_host and sender and smtp_port:
                self.configure_email(
                    host=smtp_host,
                    port=int(smtp_port),
                    sender=sender,
                    username=getattr(settings, "smtp_username", None),
                    password=getattr(settings, "smtp_password", None),
                    starttls=bool(getattr(settings, "smtp_starttls", True)),
                )
                return True
            return False

        if preferred == "sendgrid":
            if not use_sendgrid():
                use_smtp()
            return
        if not use_smtp():
            use_sendgrid()

    def configure_email(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
    ) -> None:
        self.email_config = EmailConfig(
            host=host,
            port=port,
            username=username,
            password=password,
            sender=sender,
            starttls=starttls,
        )
        self.email_backend = "smtp"

    def configure_sendgrid(self, *, api_key: str, sender: str | None = None) -> None:
        self.sendgrid_config = SendGridConfig(api_key=api_key, sender=sender)
        self.email_backend = "sendgrid"

    def _email_sender_available(self) -> bool:
        if self.email_backend == "sendgrid":
            return self.sendgrid_config is not None
        return self.email_config is not None

    def _render_template(self, template_name: str, context: dict) -> str:
        template = self.template_env.get_template(template_name)
        return template.render(**context)

    def send_invoice_email(self, message: InvoiceEmail, file_path: str | Path) -> bool:
        """Send the invoice with the PDF at file_path attached. Returns False when nothing was sent."""
        if not self._email_sender_available():
            logger.warning("Email sender not configured; invoice %s not sent", message.invoice.invoice_number)
            return False

        path = Path(file_path)
        mime_type, _ = mimetypes.guess_type(path.name)
        attachment = EmailAttachment(
            filename=f"invoice_{message.invoice.invoice_number}.pdf",
            content=path.read_bytes(),
            mime_type=mime_type or "application/pdf",
        )
        context = {
            "recipient_name": message.recipient_name,
            "company": message.company,
            "invoice": message.invoice,
        }
        html_body = self._render_template("email/invoice.html", context)
        text_body = self._render_template("email/invoice.txt", context)
        subject = f"Invoice {message.invoice.invoice_number} from {message.company.name}"

        try:
            self._send_email(
                to=message.recipient_email,
                subject=subject,
                html_body=html_body,
                text_body=text_body,
                attachments=[attachment],
            )
        except (smtplib.SMTPException, OSError, httpx.HTTPError, RuntimeError) as exc:
            logger.error(
                "Failed to send invoice %s to %s: %s",
                message.invoice.invoice_number,
                message.recipient_email,
                exc,
            )
            return False
        logger.info("Invoice %s sent to %s", message.invoice.invoice_number, message.recipient_email)
        return True

    def _send_email(
        self,
        *,
        to: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
        attachments: Sequence[EmailAttachment] | None = None,
    ) -> None:
        if self.email_backend == "sendgrid":
            if not self.sendgrid_config:
                raise RuntimeError("SendGrid sender not configured")
            self._send_email_via_sendgrid(
                to=to,
                subject=subject,
                html_body=html_body,
                text_body=text_body,
                attachments=list(attachments or []),
            )
            return

        if not self.email_config:
            raise RuntimeError("Email sender not configured")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.email_config.sender
        message["To"] = to

        message.set_content(text_body or "", subtype="plain", charset="utf-8")
        message.add_alternative(html_body, subtype="html", charset="utf-8")

        for attachment in attachments or []:
            maintype = "application"
            subtype = "octet-stream"
            if attachment.mime_type and "/" in attachment.mime_type:
                maintype, subtype = attachment.mime_type.split("/", 1)
            message.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype,
                filename=attachment.filename,
            )

        with smtplib.SMTP(self.email_config.host, self.email_config.port, timeout=30) as smtp:
            if self.email_config.starttls:
                smtp.starttls()
            if self.email_config.username and self.email_config.password:
                smtp.login(self.email_config.username, self.email_config.password)
            smtp.send_message(message)

    def _send_email_via_sendgrid(
        self,
        *,
        to: str,
        subject: str,
        html_body: str,
        text_body: str | None,
        attachments: Sequence[EmailAttachment],
    ) -> None:
        if not self.sendgrid_config:
            raise RuntimeError("SendGrid sender not configured")

        sender = self.sendgrid_config.sender or (self.email_config.sender if self.email_config else None)
        if not sender:
            raise RuntimeError("SendGrid sender address missing")
        name, email = parseaddr(sender)
        if not email:
            raise RuntimeError("SendGrid sender address invalid")

        contents: list[dict[str, str]] = []
        if text_body:
            contents.append({"type": "text/plain", "value": text_body})
        contents.append({"type": "text/html", "value": html_body})

        payload: dict[str, object] = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": email},
            "subject": subject,
            "content": contents,
        }
        if name:
            payload["from"]["name"] = name

        if attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(item.content).decode("ascii"),
                    "type": item.mime_type or "application/octet-stream",
                    "filename": item.filename,
                    "disposition": "attachment",
                }
                for item in attachments
            ]

        headers = {
            "Authorization": f"Bearer {self.sendgrid_config.api_key}",
            "Content-Type": "application/json",
        }
        response = httpx.post(
            "https://api.sendgrid.com/v3/mail/send",
            headers=headers,
            json=payload,
            timeout=30,
        )
        response.raise_for_status()
