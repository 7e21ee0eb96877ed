import json
from typing import Any, Callable, Dict, Optional

from verification_mailer.credentials import (
    CredentialProvider,
    DatabaseSettings,
    build_credential_provider,
)
from verification_mailer.errors import VerificationMailerError
from verification_mailer.message import build_verification_email, parse_notification
from verification_mailer.utils.db import VerificationStore
from verification_mailer.utils.logger import get_logger
from verification_mailer.utils.sendgrid_client import SendGridMailer

logger = get_logger("notifier")

FAILURE_MESSAGE = "Failed to send verification email or log it in the database"


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "body": json.dumps(body),
    }


class VerificationNotifier:
    """
    Sends the verification email, then stamps verificationEmailSentAt.

    The email always goes out before the database write. If the write fails
    afterwards the email is not recalled; the invocation just reports 500.
    """

    def __init__(
        self,
        credential_provider: CredentialProvider,
        mailer_factory: Optional[Callable[[str], Any]] = None,
        store_factory: Optional[Callable[[DatabaseSettings], Any]] = None,
    ):
        self.credential_provider = credential_provider
        self.mailer_factory = mailer_factory or SendGridMailer
        self.store_factory = store_factory or VerificationStore

    def handle(self, event: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("notifier.event_received", extra={"event": event})

        try:
            # 1) Parse the SNS message
            notification = parse_notification(event)

            # 2) Resolve credentials for this invocation
            creds = self.credential_provider.resolve()

            # 3) Send via SendGrid
            message = build_verification_email(notification, creds.sender)
            self.mailer_factory(creds.sendgrid_api_key).send(message)
            logger.info("notifier.email_sent", extra={"email": notification.email})

            # 4) Record the send time
            self.store_factory(creds.database).mark_verification_sent(notification.email)
            logger.info("notifier.timestamp_stored", extra={"email": notification.email})

        except VerificationMailerError as e:
            logger.error(
                "notifier.failed",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return _response(500, {"message": FAILURE_MESSAGE, "error": str(e)})
        except Exception as e:
            logger.exception("notifier.unexpected_error", extra={"error": str(e)})
            return _response(500, {"message": FAILURE_MESSAGE, "error": str(e)})

        return _response(
            200,
            {
                "message": (
                    f"Verification email sent to {notification.email} "
                    "and timestamp stored in the database."
                )
            },
        )


# Built once per container, on first invocation
_notifier: Optional[VerificationNotifier] = None


def get_notifier() -> VerificationNotifier:
    global _notifier
    if _notifier is None:
        _notifier = VerificationNotifier(build_credential_provider())
    return _notifier


def lambda_handler(event, context):
    logger.info(
        "notifier.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    try:
        notifier = get_notifier()
    except VerificationMailerError as e:
        # Bad CREDENTIAL_SOURCE or missing secret names
        logger.error("notifier.startup_error", extra={"error": str(e)})
        return _response(500, {"message": FAILURE_MESSAGE, "error": str(e)})

    return notifier.handle(event)
