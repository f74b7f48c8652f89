"""
Code Delivery Channels

Verification codes leave the engine through an abstract sender. The
send_* helpers never raise for transport failures: the error is logged
and False is returned so the caller can retry or fall back to another
method.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from .config import SecurityConfig

logger = logging.getLogger(__name__)


def _mask(destination: str) -> str:
    """Keep only the last characters of a phone number or address for logs"""
    if '@' in destination:
        local, _, domain = destination.partition('@')
        return f"{local[:1]}***@{domain}"
    return f"***{destination[-4:]}"


class SMSGateway:
    """Interface for an external SMS provider"""

    def send(self, phone_number: str, message: str) -> None:
        raise NotImplementedError


class EmailSender:
    """Interface for an external e-mail transport"""

    def send(self, to_email: str, subject: str, body_html: str) -> None:
        raise NotImplementedError


class LogSMSGateway(SMSGateway):
    """Development gateway: records the send instead of contacting a provider"""

    def send(self, phone_number: str, message: str) -> None:
        logger.info(f"SMS queued for {_mask(phone_number)}")


class SMTPEmailSender(EmailSender):
    """Sends mail through the SMTP server from configuration"""

    def __init__(self, config: Optional[SecurityConfig] = None):
        self.config = config or SecurityConfig()

    def send(self, to_email: str, subject: str, body_html: str) -> None:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.config.EMAIL_FROM
        msg['To'] = to_email

        html_part = MIMEText(body_html, 'html')
        msg.attach(html_part)

        with smtplib.SMTP(self.config.SMTP_HOST, self.config.SMTP_PORT,
                          timeout=self.config.SMTP_TIMEOUT) as server:
            if self.config.SMTP_USE_TLS:
                server.starttls()
            if self.config.SMTP_USERNAME and self.config.SMTP_PASSWORD:
                server.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD)
            server.send_message(msg)


def send_sms_otp(gateway: SMSGateway, phone_number: str, code: str) -> bool:
    """Send a verification code by SMS"""
    try:
        gateway.send(phone_number, f"Your SplitShare verification code is: {code}")
    except Exception as e:
        logger.error(f"Failed to send SMS OTP to {_mask(phone_number)}: {e}")
        return False

    logger.info(f"SMS OTP sent to {_mask(phone_number)}")
    return True


def send_email_otp(sender: EmailSender, email: str, code: str,
                   ttl_minutes: int = 5) -> bool:
    """Send a verification code by e-mail"""
    body = f"""
    <h2>Verification Code</h2>
    <p>Your verification code is: <strong>{code}</strong></p>
    <p>This code will expire in {ttl_minutes} minutes.</p>
    <p>If you didn't request this, please ignore this email.</p>
    """

    try:
        sender.send(email, "Your SplitShare Verification Code", body)
    except Exception as e:
        logger.error(f"Failed to send email OTP to {_mask(email)}: {e}")
        return False

    logger.info(f"Email OTP sent to {_mask(email)}")
    return True
