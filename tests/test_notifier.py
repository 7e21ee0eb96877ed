import importlib
import json
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from conftest import load_event, sns_event
from verification_mailer.credentials import CredentialProvider, Credentials, DatabaseSettings
from verification_mailer.errors import ConfigurationError, DeliveryError, PersistenceError
from verification_mailer.notifier import VerificationNotifier
from verification_mailer.utils.db import VerificationStore

CREDS = Credentials(
    sendgrid_api_key="SG.test",
    sender="no-reply@example.com",
    database=DatabaseSettings(host="db.internal", name="app", user="app_user", password="s3cret"),
)


class StubProvider(CredentialProvider):
    def __init__(self, creds=CREDS, error=None):
        self.creds = creds
        self.error = error
        self.calls = 0

    def resolve(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.creds


class StubMailer:
    def __init__(self, error=None):
        self.error = error
        self.api_keys = []
        self.sent = []

    def __call__(self, api_key):
        self.api_keys.append(api_key)
        return self

    def send(self, message):
        if self.error:
            raise self.error
        self.sent.append(message)
        return 202


class StubConnection:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class StubStore:
    """
    Records call order for the notifier. Connection release by the real
    VerificationStore is checked in the psycopg2-backed tests below.
    """

    def __init__(self, error=None):
        self.error = error
        self.settings = []
        self.updated = []
        self.connections = []

    def __call__(self, settings):
        self.settings.append(settings)
        return self

    def mark_verification_sent(self, email):
        conn = StubConnection()
        self.connections.append(conn)
        try:
            if self.error:
                raise self.error
            self.updated.append(email)
            return 1
        finally:
            conn.close()


def _notifier(provider=None, mailer=None, store=None):
    provider = provider or StubProvider()
    mailer = mailer or StubMailer()
    store = store or StubStore()
    return VerificationNotifier(provider, mailer_factory=mailer, store_factory=store), mailer, store


def _body(resp):
    return json.loads(resp["body"])


def test_success_sends_email_then_records_timestamp(verification_event):
    notifier, mailer, store = _notifier()

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 200
    assert "a@example.com" in _body(resp)["message"]
    assert "error" not in _body(resp)

    assert mailer.api_keys == ["SG.test"]
    assert len(mailer.sent) == 1
    sent = mailer.sent[0]
    assert sent.to == "a@example.com"
    assert sent.sender == "no-reply@example.com"
    assert "https://app.example.com/verify?user=a%40example.com&token=T1" in sent.text

    assert store.settings == [CREDS.database]
    assert store.updated == ["a@example.com"]
    assert all(c.closed for c in store.connections)


@pytest.mark.parametrize("missing_field", ["email", "token", "baseUrl"])
def test_missing_field_never_touches_provider_or_database(missing_field):
    msg = {"email": "a@example.com", "token": "T1", "baseUrl": "https://app.example.com/verify"}
    del msg[missing_field]
    notifier, mailer, store = _notifier()

    resp = notifier.handle(sns_event(msg))

    assert resp["statusCode"] == 500
    assert "Missing or invalid required fields" in _body(resp)["error"]
    assert mailer.api_keys == [] and mailer.sent == []
    assert store.settings == []


@pytest.mark.parametrize(
    "field, value",
    [("email", ["a@example.com"]), ("token", 123), ("baseUrl", {"u": 1})],
)
def test_non_string_field_never_touches_provider_or_database(field, value):
    msg = {"email": "a@example.com", "token": "T1", "baseUrl": "https://app.example.com/verify"}
    msg[field] = value
    notifier, mailer, store = _notifier()

    resp = notifier.handle(sns_event(msg))

    assert resp["statusCode"] == 500
    assert "Missing or invalid required fields" in _body(resp)["error"]
    assert mailer.api_keys == [] and mailer.sent == []
    assert store.settings == []


def test_empty_token_fixture_is_rejected():
    notifier, mailer, store = _notifier()

    resp = notifier.handle(load_event("sns_missing_token_event.json"))

    assert resp["statusCode"] == 500
    assert mailer.sent == []
    assert store.updated == []


def test_unparsable_envelope_returns_500():
    notifier, mailer, _ = _notifier()

    resp = notifier.handle({"Records": [{"Sns": {"Message": "not-json"}}]})

    assert resp["statusCode"] == 500
    assert _body(resp)["message"] == "Failed to send verification email or log it in the database"
    assert mailer.sent == []


def test_configuration_error_returns_500_before_sending(verification_event):
    provider = StubProvider(error=ConfigurationError("Missing required environment variables: DOMAIN"))
    notifier, mailer, store = _notifier(provider=provider)

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 500
    assert "DOMAIN" in _body(resp)["error"]
    assert mailer.sent == []
    assert store.settings == []


def test_delivery_failure_skips_database(verification_event):
    mailer = StubMailer(error=DeliveryError("SendGrid send failed: HTTP Error 401: Unauthorized"))
    notifier, _, store = _notifier(mailer=mailer)

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 500
    assert "401" in _body(resp)["error"]
    assert store.settings == []
    assert store.connections == []


def test_database_failure_after_send_returns_500_and_closes(verification_event):
    store = StubStore(error=PersistenceError("Failed to update verification timestamp: boom"))
    notifier, mailer, _ = _notifier(store=store)

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 500
    assert _body(resp)["error"] == "Failed to update verification timestamp: boom"
    # The email already went out; nothing is rolled back
    assert len(mailer.sent) == 1
    assert len(store.connections) == 1
    assert store.connections[0].closed


def test_unexpected_error_is_reported_not_raised(verification_event):
    mailer = StubMailer(error=ValueError("unexpected"))
    notifier, _, store = _notifier(mailer=mailer)

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 500
    assert _body(resp)["error"] == "unexpected"
    assert store.settings == []


def test_credentials_resolved_per_invocation(verification_event):
    provider = StubProvider()
    notifier, _, _ = _notifier(provider=provider)

    notifier.handle(verification_event)
    notifier.handle(verification_event)

    assert provider.calls == 2


def test_lambda_handler_uses_selected_provider(monkeypatch, verification_event):
    notifier_mod = importlib.import_module("verification_mailer.notifier")

    mailer = StubMailer()
    store = StubStore()
    monkeypatch.setattr(notifier_mod, "SendGridMailer", mailer)
    monkeypatch.setattr(notifier_mod, "VerificationStore", store)
    monkeypatch.setattr(notifier_mod, "build_credential_provider", lambda: StubProvider())
    monkeypatch.setattr(notifier_mod, "_notifier", None)

    resp = notifier_mod.lambda_handler(verification_event, None)

    assert resp["statusCode"] == 200
    assert store.updated == ["a@example.com"]


def test_lambda_handler_reports_bad_credential_source(monkeypatch, verification_event):
    notifier_mod = importlib.import_module("verification_mailer.notifier")
    monkeypatch.setattr(notifier_mod, "_notifier", None)
    monkeypatch.setenv("CREDENTIAL_SOURCE", "vault")

    resp = notifier_mod.lambda_handler(verification_event, None)

    assert resp["statusCode"] == 500
    assert "CREDENTIAL_SOURCE" in _body(resp)["error"]


def _pg_connection(execute_error=None):
    conn = MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    cursor.rowcount = 1
    if execute_error is not None:
        cursor.execute.side_effect = execute_error
    return conn


@patch("verification_mailer.utils.db.psycopg2.connect")
def test_real_store_closes_connection_on_success(mock_connect, verification_event):
    conn = _pg_connection()
    mock_connect.return_value = conn
    notifier = VerificationNotifier(
        StubProvider(), mailer_factory=StubMailer(), store_factory=VerificationStore
    )

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 200
    mock_connect.assert_called_once_with(
        host="db.internal", port=5432, dbname="app", user="app_user", password="s3cret"
    )
    conn.close.assert_called_once()


@patch("verification_mailer.utils.db.psycopg2.connect")
def test_real_store_closes_connection_when_update_fails(mock_connect, verification_event):
    conn = _pg_connection(execute_error=psycopg2.OperationalError("deadlock detected"))
    mock_connect.return_value = conn
    mailer = StubMailer()
    notifier = VerificationNotifier(
        StubProvider(), mailer_factory=mailer, store_factory=VerificationStore
    )

    resp = notifier.handle(verification_event)

    assert resp["statusCode"] == 500
    assert "deadlock detected" in _body(resp)["error"]
    assert len(mailer.sent) == 1
    conn.close.assert_called_once()
