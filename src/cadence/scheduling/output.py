"""Output routing - file and email sinks for captured task output.

After every run the dispatcher hands the :class:`ExecutionResult` to an
:class:`OutputRouter`, which writes it to the task's output file and/or
emails it, according to the task definition.  Routing is best-effort: a
failing sink is logged and never changes the run's recorded status.

::

    OutputRouter.route(definition, result)
      ├── definition.output_path  → FileOutputSink.write(...)
      └── definition.email_to     → MailOutputSink.send(...) → MailSender
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from cadence.core.logging import get_logger
from cadence.scheduling.models import ExecutionResult

if TYPE_CHECKING:
    from cadence.core.settings import CadenceSettings
    from cadence.scheduling.definition import TaskDefinition

logger = get_logger(__name__)


def format_output(stdout: str, stderr: str) -> str:
    """Render captured output as a plain-text block."""
    parts = [stdout.rstrip("\n")] if stdout else []
    if stderr:
        parts.append(f"[stderr]\n{stderr.rstrip()}")
    if not parts:
        return ""
    return "\n".join(parts) + "\n"


class FileOutputSink:
    """Append (or overwrite) captured output to a file."""

    def write(
        self,
        task_name: str,
        stdout: str,
        stderr: str,
        *,
        path: Path,
        append: bool = True,
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        mode = "a" if append else "w"
        with open(path, mode, encoding="utf-8") as f:
            f.write(format_output(stdout, stderr))


@runtime_checkable
class MailSender(Protocol):
    def send(self, recipients: list[str], subject: str, body: str) -> None: ...


class SMTPMailSender:
    """Send mail through an SMTP relay (STARTTLS + login when configured)."""

    def __init__(
        self,
        host: str,
        from_address: str,
        *,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: CadenceSettings) -> SMTPMailSender:
        if not settings.mail_host:
            raise ValueError("mail_host is not configured")
        return cls(
            settings.mail_host,
            settings.mail_from_address,
            port=settings.mail_port,
            username=settings.mail_username,
            password=settings.mail_password,
            use_tls=settings.mail_use_tls,
        )

    def _build_message(self, recipients: list[str], subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = ", ".join(recipients)
        msg.set_content(body)
        return msg

    def send(self, recipients: list[str], subject: str, body: str) -> None:
        message = self._build_message(recipients, subject, body)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)


class MailOutputSink:
    """Email captured output through a :class:`MailSender`."""

    def __init__(self, sender: MailSender) -> None:
        self.sender = sender

    def send(
        self,
        task_name: str,
        stdout: str,
        stderr: str,
        *,
        recipients: list[str],
        result: ExecutionResult | None = None,
    ) -> None:
        status = result.status.value if result is not None else "finished"
        subject = f"Scheduled task output: {task_name} ({status})"
        body = format_output(stdout, stderr) or "(no output)\n"
        if result is not None and result.error:
            body += f"\nError: {result.error}\n"
        self.sender.send(recipients, subject, body)


class OutputRouter:
    """Route a result according to a definition's output settings."""

    def __init__(
        self,
        file_sink: FileOutputSink | None = None,
        mail_sink: MailOutputSink | None = None,
    ) -> None:
        self.file_sink = file_sink or FileOutputSink()
        self.mail_sink = mail_sink

    def route(self, definition: TaskDefinition, result: ExecutionResult) -> None:
        """Write and mail the output; sink failures are logged, never raised."""
        if definition.output_path is not None:
            try:
                self.file_sink.write(
                    definition.name,
                    result.stdout,
                    result.stderr,
                    path=definition.output_path,
                    append=definition.append_output,
                )
            except Exception:
                logger.exception("output_file_failed", task=definition.name, path=str(definition.output_path))

        if not definition.email_to:
            return
        if definition.email_only_on_failure and result.succeeded:
            return
        if self.mail_sink is None:
            logger.warning("output_mail_not_configured", task=definition.name)
            return
        try:
            self.mail_sink.send(
                definition.name,
                result.stdout,
                result.stderr,
                recipients=list(definition.email_to),
                result=result,
            )
        except Exception:
            logger.exception("output_mail_failed", task=definition.name)
