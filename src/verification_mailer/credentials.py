import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from verification_mailer.errors import ConfigurationError
from verification_mailer.utils.logger import get_logger
from verification_mailer.utils.secrets import get_secret_field, get_secret_json

logger = get_logger("credentials")

DEFAULT_DB_PORT = 5432


@dataclass(frozen=True)
class DatabaseSettings:
    host: str
    name: str
    user: str
    password: str = field(repr=False)
    port: int = DEFAULT_DB_PORT


@dataclass(frozen=True)
class Credentials:
    sendgrid_api_key: str = field(repr=False)
    sender: str
    database: DatabaseSettings


def _parse_port(raw: Optional[object], source: str) -> int:
    if raw is None or raw == "":
        return DEFAULT_DB_PORT
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Invalid {source}='{raw}'. Must be an integer port number."
        )


def _log_summary(source: str, creds: Credentials) -> None:
    # Never log secret values, only whether they arrived.
    logger.info(
        "credentials.resolved",
        extra={
            "source": source,
            "sendgrid_api_key": "loaded" if creds.sendgrid_api_key else "missing",
            "sender": creds.sender,
            "db_host": creds.database.host,
            "db_port": creds.database.port,
            "db_name": creds.database.name,
            "db_user": creds.database.user,
            "db_password": "loaded" if creds.database.password else "missing",
        },
    )


class CredentialProvider:
    """Source of the SendGrid key, sender address and database settings."""

    source = "abstract"

    def resolve(self) -> Credentials:
        raise NotImplementedError


class EnvCredentialProvider(CredentialProvider):
    """
    Reads everything from the Lambda environment:

    SENDGRID_API_KEY, DOMAIN, DB_HOST_NO_PORT (or DB_HOST), DB_PORT (default
    5432), DB_NAME, DB_USERNAME, DB_PASSWORD
    """

    source = "env"

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self._environ = environ

    def _get(self, name: str) -> Optional[str]:
        env = os.environ if self._environ is None else self._environ
        return env.get(name)

    def resolve(self) -> Credentials:
        values = {
            "SENDGRID_API_KEY": self._get("SENDGRID_API_KEY"),
            "DOMAIN": self._get("DOMAIN"),
            "DB_HOST_NO_PORT": self._get("DB_HOST_NO_PORT") or self._get("DB_HOST"),
            "DB_NAME": self._get("DB_NAME"),
            "DB_USERNAME": self._get("DB_USERNAME"),
            "DB_PASSWORD": self._get("DB_PASSWORD"),
        }

        missing = [
            "DB_HOST_NO_PORT (or DB_HOST)" if name == "DB_HOST_NO_PORT" else name
            for name, value in values.items()
            if not value
        ]
        if missing:
            msg = f"Missing required environment variables: {', '.join(missing)}"
            logger.error(msg)
            raise ConfigurationError(msg)

        creds = Credentials(
            sendgrid_api_key=values["SENDGRID_API_KEY"],
            sender=values["DOMAIN"],
            database=DatabaseSettings(
                host=values["DB_HOST_NO_PORT"],
                port=_parse_port(self._get("DB_PORT"), "DB_PORT"),
                name=values["DB_NAME"],
                user=values["DB_USERNAME"],
                password=values["DB_PASSWORD"],
            ),
        )
        _log_summary(self.source, creds)
        return creds


class SecretsManagerCredentialProvider(CredentialProvider):
    """
    Fetches three secrets by name on every resolve():

    - sendgrid: the API key, plain or {"api_key": ...}
    - database: {"host", "database" | "dbname", "username", "password", "port"?}
    - domain:   the sender address, plain or {"domain": ...}
    """

    source = "secretsmanager"

    def __init__(self, sendgrid_secret: str, database_secret: str, domain_secret: str,
                 region_name: str = "us-east-1"):
        self.sendgrid_secret = sendgrid_secret
        self.database_secret = database_secret
        self.domain_secret = domain_secret
        self.region_name = region_name

    @classmethod
    def from_env(cls) -> "SecretsManagerCredentialProvider":
        names = {
            "SENDGRID_SECRET_NAME": os.getenv("SENDGRID_SECRET_NAME"),
            "DB_SECRET_NAME": os.getenv("DB_SECRET_NAME"),
            "DOMAIN_SECRET_NAME": os.getenv("DOMAIN_SECRET_NAME"),
        }
        missing = [name for name, value in names.items() if not value]
        if missing:
            msg = f"Missing required environment variables: {', '.join(missing)}"
            logger.error(msg)
            raise ConfigurationError(msg)

        return cls(
            sendgrid_secret=names["SENDGRID_SECRET_NAME"],
            database_secret=names["DB_SECRET_NAME"],
            domain_secret=names["DOMAIN_SECRET_NAME"],
            region_name=os.getenv("AWS_REGION", "us-east-1"),
        )

    def resolve(self) -> Credentials:
        api_key = get_secret_field(
            self.sendgrid_secret, self.region_name, "api_key", "SENDGRID_API_KEY"
        )
        db = get_secret_json(self.database_secret, self.region_name)
        sender = get_secret_field(self.domain_secret, self.region_name, "domain", "DOMAIN")

        db_values = {
            "host": db.get("host"),
            "database": db.get("database") or db.get("dbname"),
            "username": db.get("username"),
            "password": db.get("password"),
        }
        missing = [key for key, value in db_values.items() if not value]
        if missing:
            msg = f"Database secret '{self.database_secret}' is missing: {', '.join(missing)}"
            logger.error(msg)
            raise ConfigurationError(msg)

        creds = Credentials(
            sendgrid_api_key=api_key,
            sender=sender,
            database=DatabaseSettings(
                host=db_values["host"],
                port=_parse_port(db.get("port"), "port"),
                name=db_values["database"],
                user=db_values["username"],
                password=db_values["password"],
            ),
        )
        _log_summary(self.source, creds)
        return creds


def build_credential_provider(source: Optional[str] = None) -> CredentialProvider:
    """
    Pick the provider named by CREDENTIAL_SOURCE ("env" or "secretsmanager").
    """
    source = (source or os.getenv("CREDENTIAL_SOURCE") or "env").strip().lower()

    if source == "env":
        return EnvCredentialProvider()
    if source == "secretsmanager":
        return SecretsManagerCredentialProvider.from_env()

    raise ConfigurationError(
        f"Unknown CREDENTIAL_SOURCE='{source}'. Expected 'env' or 'secretsmanager'."
    )
