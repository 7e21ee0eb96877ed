import json
from dataclasses import dataclass
from typing import Any, Dict
from urllib.parse import quote

from verification_mailer.errors import MalformedInputError

SUBJECT = "Verify Your Email"

# Characters JavaScript's encodeURIComponent leaves alone besides [A-Za-z0-9_.~-].
_URI_COMPONENT_SAFE = "!*'()"


@dataclass(frozen=True)
class InboundNotification:
    email: str
    token: str
    base_url: str


@dataclass(frozen=True)
class OutboundEmailMessage:
    to: str
    sender: str
    subject: str
    text: str
    html: str


def _extract_message(event: Dict[str, Any]) -> Any:
    try:
        return event["Records"][0]["Sns"]["Message"]
    except (KeyError, IndexError, TypeError):
        raise MalformedInputError("Event is not an SNS notification (Records[0].Sns.Message)")


def parse_notification(event: Dict[str, Any]) -> InboundNotification:
    """
    Pull the InboundNotification out of an SNS envelope.

    The embedded Message is normally a JSON string; a dict is accepted as-is
    for local invocations.
    """
    raw = _extract_message(event)

    if isinstance(raw, dict):
        msg = raw
    else:
        try:
            msg = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise MalformedInputError(f"SNS message is not valid JSON: {e}") from e

    if not isinstance(msg, dict):
        raise MalformedInputError("SNS message must be a JSON object")

    email = msg.get("email")
    token = msg.get("token")
    base_url = msg.get("baseUrl") or msg.get("BASE_URL")

    if not all(isinstance(value, str) and value for value in (email, token, base_url)):
        raise MalformedInputError(
            "Missing or invalid required fields in SNS message (email, token, or baseUrl)"
        )

    return InboundNotification(email=email, token=token, base_url=base_url)


def build_verification_url(base_url: str, email: str, token: str) -> str:
    return "{}?user={}&token={}".format(
        base_url,
        quote(email, safe=_URI_COMPONENT_SAFE),
        quote(token, safe=_URI_COMPONENT_SAFE),
    )


def build_verification_email(notification: InboundNotification, sender: str) -> OutboundEmailMessage:
    url = build_verification_url(notification.base_url, notification.email, notification.token)
    return OutboundEmailMessage(
        to=notification.email,
        sender=sender,
        subject=SUBJECT,
        text=f"Please verify your email by clicking the link: {url}",
        html=(
            f'<p>Please verify your email by clicking <a href="{url}">this link</a>. '
            "The link will expire in 2 minutes.</p>"
        ),
    )
