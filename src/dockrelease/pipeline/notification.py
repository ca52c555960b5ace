"""Release status e-mail: composition and best-effort delivery."""

from __future__ import annotations

import logging
import mimetypes
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from .errors import NotificationSendError

if TYPE_CHECKING:
    from .config import PipelineConfig
    from .stages.base import PipelineRun

logger = logging.getLogger(__name__)

SUCCESS_COLOR = "#2e7d32"
ATTENTION_COLOR = "#c62828"

__all__ = [
    "ATTENTION_COLOR",
    "SUCCESS_COLOR",
    "NotificationComposer",
    "NotificationMessage",
    "SmtpTransport",
    "banner_color",
]


def banner_color(status: object) -> str:
    if str(status or "").strip().upper() == "SUCCESS":
        return SUCCESS_COLOR
    return ATTENTION_COLOR


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    subject: str
    html_body: str
    recipient: str
    sender: str
    reply_to: str
    mime_type: str = "text/html"
    attachment_pattern: str = ""


class Transport(Protocol):
    def deliver(self, message: NotificationMessage, attachments: list[Path]) -> None: ...


class SmtpTransport:
    def __init__(
        self,
        host: str,
        port: int = 25,
        *,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = False,
        timeout_sec: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout_sec = timeout_sec

    @classmethod
    def from_config(cls, config: PipelineConfig) -> SmtpTransport:
        return cls(
            config.smtp_host,
            config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            starttls=config.smtp_starttls,
            timeout_sec=config.smtp_timeout_sec,
        )

    def deliver(self, message: NotificationMessage, attachments: list[Path]) -> None:
        email = build_email(message, attachments)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_sec) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(email)


def build_email(message: NotificationMessage, attachments: list[Path]) -> EmailMessage:
    email = EmailMessage()
    email["Subject"] = message.subject
    email["From"] = message.sender
    email["To"] = message.recipient
    email["Reply-To"] = message.reply_to
    maintype, _, subtype = message.mime_type.partition("/")
    if maintype == "text" and subtype == "html":
        email.set_content(message.html_body, subtype="html")
    else:
        email.set_content(message.html_body)
    for path in attachments:
        ctype, _ = mimetypes.guess_type(path.name)
        main, _, sub = (ctype or "application/octet-stream").partition("/")
        email.add_attachment(path.read_bytes(), maintype=main, subtype=sub, filename=path.name)
    return email


class NotificationComposer:
    """Turn a finished :class:`PipelineRun` into a status mail and send it."""

    def __init__(
        self,
        config: PipelineConfig,
        transport: Transport | None = None,
    ) -> None:
        self.config = config
        self.transport = transport or SmtpTransport.from_config(config)

    def compose(self, run: PipelineRun) -> NotificationMessage:
        status = str(run.status)
        color = banner_color(status)
        job = escape(run.job_name)
        number = escape(str(run.run_number))
        console_url = self.config.console_url

        rows = [
            f"<tr><td><b>Job</b></td><td>{job}</td></tr>",
            f"<tr><td><b>Run</b></td><td>#{number}</td></tr>",
            f"<tr><td><b>Status</b></td><td>{escape(status)}</td></tr>",
        ]
        if run.failed_stage:
            rows.append(
                f"<tr><td><b>Failed stage</b></td><td>{escape(run.failed_stage)}</td></tr>"
            )
        if console_url:
            link = escape(console_url, quote=True)
            rows.append(
                f'<tr><td><b>Details</b></td><td><a href="{link}">Console output</a></td></tr>'
            )
        attachment_note = ""
        if self.config.attachment_pattern:
            attachment_note = (
                f"<p>Attached: {escape(self.config.attachment_pattern)}</p>"
            )

        body = (
            "<html><body>"
            f'<div style="background-color:{color};color:#ffffff;padding:12px;'
            f'font-family:sans-serif;font-size:18px;">'
            f"{job} #{number}: {escape(status)}</div>"
            f'<table style="font-family:sans-serif;margin-top:12px;">{"".join(rows)}</table>'
            f"{attachment_note}"
            "</body></html>"
        )
        return NotificationMessage(
            subject=f"{run.job_name} #{run.run_number} - {status}",
            html_body=body,
            recipient=self.config.mail_to,
            sender=self.config.mail_from,
            reply_to=self.config.mail_reply_to,
            mime_type="text/html",
            attachment_pattern=self.config.attachment_pattern,
        )

    def attachments(self, message: NotificationMessage) -> list[Path]:
        if not message.attachment_pattern:
            return []
        return sorted(p for p in self.config.workspace.glob(message.attachment_pattern) if p.is_file())

    def send(self, message: NotificationMessage) -> bool:
        """Deliver ``message``; failures are logged and reported as ``False``."""

        try:
            self.transport.deliver(message, self.attachments(message))
        except Exception as exc:
            error = NotificationSendError(
                f"Could not send notification to {message.recipient}",
                stage="notify",
                context={"subject": message.subject},
                cause=exc,
            )
            logger.error("%s: %s: %s", error, type(exc).__name__, exc)
            return False
        logger.info("Notification sent to %s: %s", message.recipient, message.subject)
        return True
