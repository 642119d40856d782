import asyncio
import logging
import smtplib
from html import escape
from email.message import EmailMessage

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Fire-and-forget notification sender.

    Delivery failures are logged and reported through the boolean return
    value; they never propagate to the caller.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.email_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as smtp:
            if s.smtp_use_tls:
                smtp.starttls()
            if s.smtp_user:
                smtp.login(s.smtp_user, s.smtp_password or "")
            smtp.send_message(message)

    async def send(self, to: str, subject: str, html: str) -> bool:
        if not self.settings.send_emails:
            logger.info(f"Email sending disabled, skipping '{subject}' to {to}")
            return False
        try:
            await asyncio.to_thread(self._deliver, self._build(to, subject, html))
            logger.info(f"Sent '{subject}' to {to}")
            return True
        except Exception as e:
            logger.error(f"Error sending '{subject}' to {to}: {e}")
            return False

    async def send_project_welcome(
        self, to: str, project_name: str, owner_name: str
    ) -> bool:
        html = f"""
          <h1>Welcome to {escape(project_name)}</h1>
          <p>Dear {escape(owner_name)},</p>
          <p>Your project has been successfully created. Here are some next steps:</p>
          <ul>
            <li>Complete the project setup task</li>
            <li>Create your project timeline</li>
            <li>Invite team members</li>
          </ul>
          <p>Best regards,<br>Your Project Management Team</p>
        """
        return await self.send(to, f"Welcome to your new project: {project_name}", html)

    async def send_task_assignment(
        self, to: str, task_title: str, project_name: str, assignee_name: str
    ) -> bool:
        html = f"""
          <h1>New Task Assignment</h1>
          <p>Dear {escape(assignee_name)},</p>
          <p>You have been assigned a new task in project {escape(project_name)}:</p>
          <h2>{escape(task_title)}</h2>
          <p>Please log in to your dashboard to view the task details.</p>
          <p>Best regards,<br>Your Project Management Team</p>
        """
        return await self.send(to, f"New Task Assignment: {task_title}", html)
