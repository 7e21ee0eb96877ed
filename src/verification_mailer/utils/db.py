from contextlib import closing

import psycopg2
from psycopg2 import sql

from verification_mailer.credentials import DatabaseSettings
from verification_mailer.errors import PersistenceError
from verification_mailer.utils.logger import get_logger

logger = get_logger("db")

USERS_SCHEMA_NAME = "public"
USERS_TABLE_NAME = "AppUsers"
SENT_AT_COLUMN = "verificationEmailSentAt"

MARK_SENT_QUERY = sql.SQL("UPDATE {schema}.{table} SET {column} = NOW() WHERE email = %s").format(
    schema=sql.Identifier(USERS_SCHEMA_NAME),
    table=sql.Identifier(USERS_TABLE_NAME),
    column=sql.Identifier(SENT_AT_COLUMN),
)


class VerificationStore:
    """One short-lived connection per call; nothing is pooled or cached."""

    def __init__(self, settings: DatabaseSettings):
        self.settings = settings

    def connect(self):
        s = self.settings
        logger.debug(
            "db.connecting",
            extra={"host": s.host, "port": s.port, "database": s.name},
        )
        try:
            return psycopg2.connect(
                host=s.host,
                port=s.port,
                dbname=s.name,
                user=s.user,
                password=s.password,
            )
        except psycopg2.Error as e:
            raise PersistenceError(f"Database connection failed: {e}") from e

    def mark_verification_sent(self, email: str) -> int:
        """
        Set verificationEmailSentAt = NOW() for ``email``.

        Returns the number of rows updated. Zero is not an error.
        """
        try:
            with closing(self.connect()) as conn:
                # `with conn` commits or rolls back, closing() releases
                with conn:
                    with conn.cursor() as cursor:
                        cursor.execute(MARK_SENT_QUERY, (email,))
                        updated = cursor.rowcount
        except psycopg2.Error as e:
            logger.error("db.update_failed", extra={"error": str(e), "email": email})
            raise PersistenceError(f"Failed to update verification timestamp: {e}") from e

        if updated == 0:
            logger.warning("db.no_matching_row", extra={"email": email})
        else:
            logger.info("db.verification_sent_recorded", extra={"email": email, "rows": updated})

        return updated
