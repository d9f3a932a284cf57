import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

logger = logging.getLogger(__name__)


class EmailService:
    """
    Transactional email for GymFlow notifications via SendGrid.
    Falls back to logging the message when SendGrid is not configured.
    """

    def __init__(self, sendgrid_api_key: Optional[str], sender_email: Optional[str], app_name: str = "GymFlow"):
        self.sendgrid_api_key = sendgrid_api_key
        self.sender_email = sender_email
        self.app_name = app_name

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    # ============================================================
    # ✅ Send Notification Email (synchronous, runs in queue worker threads)
    # ============================================================
    def send_notification_email(self, to_email: str, title: str, message: str) -> None:
        """Raises on delivery failure so the queue can retry."""

        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {to_email}")
            logger.info(f"Subject: {title}")
            logger.info(f"Body: {message}")
            return

        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>{title}</h2>
            <p>{message}</p>
            <hr style="border:none; border-top:1px solid #eee; margin: 24px 0;">
            <p>Best regards,<br><strong>The {self.app_name} Team</strong></p>
        </div>
        """

        mail = Mail(
            from_email=self.sender_email,
            to_emails=to_email,
            subject=title,
            html_content=html_content,
        )
        sg = SendGridAPIClient(self.sendgrid_api_key)
        response = sg.send(mail)
        logger.info(f"✅ Notification email sent to {to_email}. Status: {response.status_code}")
