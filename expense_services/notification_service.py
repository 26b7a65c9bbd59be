"""
Email notifications: invitations, approval requests, decision outcomes.

Fire-and-forget.  ``SmtpMailer`` raises ``NotificationDeliveryError``;
``EmailNotifier`` logs that with ``exc_info`` and returns False, so a mail
outage never blocks the operation that triggered it.  Without a mailer
(notifications disabled) messages are only logged.
"""

from __future__ import annotations

import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from expense_kernel.domain.expense import Expense, ExpenseStatus
from expense_kernel.domain.identity import UserRecord
from expense_kernel.exceptions import NotificationDeliveryError
from expense_kernel.logging_config import get_logger

logger = get_logger("services.notification")

_TAGS = re.compile(r"<[^>]+>")


class SmtpMailer:
    """Sends one multipart (plain + HTML) message per call over SMTP."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "",
        use_tls: bool = True,
        timeout_seconds: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address or username
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def send(
        self,
        to_address: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_address
        msg.attach(MIMEText(text_content or _TAGS.sub("", html_content), "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationDeliveryError(to_address, str(exc)) from exc


class EmailNotifier:
    """Composes and sends the system's notification emails."""

    def __init__(self, mailer: SmtpMailer | None = None, frontend_url: str = ""):
        self._mailer = mailer
        self.frontend_url = frontend_url.rstrip("/")

    def _deliver(self, event: str, to_address: str, subject: str, html: str) -> bool:
        if self._mailer is None:
            logger.info(
                "email_skipped",
                extra={"email_event": event, "recipient": to_address, "subject": subject},
            )
            return False
        try:
            self._mailer.send(to_address, subject, html)
        except NotificationDeliveryError:
            logger.warning(
                "email_delivery_failed",
                extra={"email_event": event, "recipient": to_address},
                exc_info=True,
            )
            return False
        logger.info("email_sent", extra={"email_event": event, "recipient": to_address})
        return True

    def send_invitation(
        self, user: UserRecord, company_name: str, invited_by: str = "",
    ) -> bool:
        subject = f"Invitation to join {company_name} - Expense Management System"
        link = f"{self.frontend_url}/accept-invitation?email={user.email}"
        html = (
            f"<p>Hello {escape(user.name)},</p>"
            f"<p>You have been invited to join <strong>{escape(company_name)}</strong> "
            f"as <strong>{escape(user.role.value)}</strong>"
            + (f" by {escape(invited_by)}" if invited_by else "")
            + ".</p>"
            f'<p><a href="{escape(link)}">Accept invitation</a></p>'
        )
        return self._deliver("invitation", user.email, subject, html)

    def send_approval_request(self, approver: UserRecord, expense: Expense) -> bool:
        subject = (
            f"Approval requested: {expense.description} "
            f"({expense.base_amount} {expense.base_currency})"
        )
        html = (
            f"<p>Hello {escape(approver.name)},</p>"
            f"<p>An expense is waiting for your decision:</p>"
            f"<ul><li>{escape(expense.description)}</li>"
            f"<li>{escape(expense.category.value)}</li>"
            f"<li>{expense.original_amount} {expense.original_currency} "
            f"({expense.base_amount} {expense.base_currency})</li></ul>"
            f'<p><a href="{self.frontend_url}/dashboard/manager">Review approvals</a></p>'
        )
        return self._deliver("approval_request", approver.email, subject, html)

    def send_decision(self, submitter: UserRecord, expense: Expense) -> bool:
        outcome = "approved" if expense.status == ExpenseStatus.APPROVED else "rejected"
        subject = f"Your expense was {outcome}: {expense.description}"
        reason = ""
        if expense.status == ExpenseStatus.REJECTED and expense.rejection_reason:
            reason = f"<p>Reason: {escape(expense.rejection_reason)}</p>"
        html = (
            f"<p>Hello {escape(submitter.name)},</p>"
            f"<p>Your expense <strong>{escape(expense.description)}</strong> "
            f"({expense.base_amount} {expense.base_currency}) was {outcome}.</p>"
            f"{reason}"
        )
        return self._deliver("decision", submitter.email, subject, html)
