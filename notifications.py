import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import requests

from models.outcome import Outcome, OutcomeStatus
from models.settings import NotificationSettings

logger = logging.getLogger(__name__)


class Notifications:
    """
    Slack and email notices for branch outcomes.

    Only Success and retryable Failed outcomes are sent; AlreadySatisfied and rejected
    events are routine and stay in the log. Delivery problems are logged, never raised.
    """

    def __init__(self, settings: NotificationSettings, repository: str):
        self.repository = repository
        self.slack_webhook_url = settings.slack_webhook_url
        self.email = settings.email
        self.email_enabled = settings.email is not None

        if self.email_enabled:
            logger.debug(
                f"Email Config - Server: {self.email.smtp_server}, Port: {self.email.smtp_port}, "
                f"Use TLS: {self.email.use_tls}, Recipients: {self.email.recipients}"
            )

    def send_slack_message(self, message: str):
        """
        Send a message to Slack via a webhook URL.
        """
        if not self.slack_webhook_url:
            logger.debug("Slack webhook URL not configured. Skipping Slack notification.")
            return
        try:
            response = requests.post(self.slack_webhook_url, json={"text": message}, timeout=10)
            if response.status_code != 200:
                logger.error(f"Failed to send Slack message. Code: {response.status_code}, Resp: {response.text}")
            else:
                logger.info("Slack message sent successfully.")
        except requests.RequestException as e:
            logger.error(f"Exception while sending Slack message: {e}")

    def send_email(self, subject: str, plain_body: str, html_body: Optional[str] = None):
        if not self.email_enabled:
            logger.debug("Email notifications not configured. Skipping Email notification.")
            return

        email = self.email
        if not all([email.smtp_server, email.username, email.password, email.recipients]):
            logger.error("Email configuration is incomplete. Check the notifications.email settings.")
            return

        msg = MIMEMultipart('alternative')
        msg['From'] = email.sender_email or email.username
        msg['To'] = ", ".join(email.recipients)
        msg['Subject'] = subject
        msg.attach(MIMEText(plain_body, 'plain'))
        if html_body:
            msg.attach(MIMEText(html_body, 'html'))

        try:
            if email.smtp_port == 465:
                server = smtplib.SMTP_SSL(email.smtp_server, email.smtp_port, timeout=10)
            else:
                server = smtplib.SMTP(email.smtp_server, email.smtp_port, timeout=10)
                server.ehlo()
                if email.use_tls:
                    server.starttls()
                    server.ehlo()
            try:
                server.login(email.username, email.password)
                server.send_message(msg)
            finally:
                server.quit()
            logger.info(f"Email sent successfully to {email.recipients} with subject '{subject}'.")
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP Authentication Error: {e}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP Error: {e}")

    def notify_branch_event(self, outcome: Outcome):
        if outcome.status == OutcomeStatus.ALREADY_SATISFIED:
            return
        if outcome.status == OutcomeStatus.FAILED and not outcome.retryable:
            return

        status = "Created" if outcome.ok else f"Failed ({outcome.reason})"
        package = f"{outcome.package_name}@{outcome.version}"
        details = outcome.detail or f"Branch created from '{outcome.base_ref}'."
        message = (
            f"🌿 Branch Event\n"
            f"Repository: {self.repository}\n"
            f"Package: {package}\n"
            f"Branch: {outcome.branch}\n"
            f"Status: {status}\n"
            f"Details: {details}"
        )
        self.send_slack_message(message)

        html_message = f"""
        <html>
          <body>
            <h2>Branch Event - {status}</h2>
            <table border="1" style="border-collapse: collapse;">
              <tr><th>Repository</th><td>{self.repository}</td></tr>
              <tr><th>Package</th><td>{package}</td></tr>
              <tr><th>Branch</th><td>{outcome.branch}</td></tr>
              <tr><th>Status</th><td>{status}</td></tr>
              <tr><th>Details</th><td>{details}</td></tr>
            </table>
          </body>
        </html>
        """
        self.send_email(f"Branch Event: {status} for {package}", message, html_message)
