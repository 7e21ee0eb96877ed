from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from verification_mailer.errors import DeliveryError
from verification_mailer.message import OutboundEmailMessage
from verification_mailer.utils.logger import get_logger

logger = get_logger("sendgrid_client")


class SendGridMailer:
    """
    Thin wrapper over SendGridAPIClient that turns any provider failure into
    a DeliveryError. No retries: a failed send fails the invocation.
    """

    def __init__(self, api_key: str):
        if not api_key:
            raise DeliveryError("SendGrid API key is required")
        self.client = SendGridAPIClient(api_key)

    def send(self, message: OutboundEmailMessage) -> int:
        mail = Mail(
            from_email=message.sender,
            to_emails=message.to,
            subject=message.subject,
            plain_text_content=message.text,
            html_content=message.html,
        )

        try:
            resp = self.client.send(mail)
        except Exception as e:
            # python_http_client raises HTTPError subclasses for 4xx/5xx
            logger.error(
                "sendgrid.send_error",
                extra={"error": str(e), "to": message.to},
            )
            raise DeliveryError(f"SendGrid send failed: {e}") from e

        status = getattr(resp, "status_code", None)
        if status is None or not 200 <= int(status) < 300:
            logger.error(
                "sendgrid.unexpected_status",
                extra={"status_code": status, "to": message.to},
            )
            raise DeliveryError(f"SendGrid send failed with status {status}")

        logger.info(
            "sendgrid.sent",
            extra={"status_code": status, "to": message.to},
        )
        return int(status)
