"""
Verification Mailer
===================

SNS-triggered AWS Lambda that sends an email-verification link through
SendGrid and records ``verificationEmailSentAt`` on the user's row in
PostgreSQL.

Modules under this package:
- notifier.py     → Lambda entry point and VerificationNotifier
- message.py      → SNS message parsing, verification URL and email body
- credentials.py  → env / Secrets Manager credential providers
- errors.py       → error taxonomy
- utils/          → logging, Secrets Manager, SendGrid and Postgres adapters

Environment variables expected:
  • CREDENTIAL_SOURCE          - "env" (default) or "secretsmanager"
  • SENDGRID_API_KEY, DOMAIN   - env source: provider key and sender address
  • DB_HOST_NO_PORT, DB_PORT, DB_NAME, DB_USERNAME, DB_PASSWORD
                               - env source: Postgres connection (port defaults to 5432)
  • SENDGRID_SECRET_NAME, DB_SECRET_NAME, DOMAIN_SECRET_NAME
                               - secretsmanager source: secret names
  • AWS_REGION                 - region for Secrets Manager (default: us-east-1)
  • LOG_LEVEL                  - log verbosity (default: INFO)

Every invocation is stateless and opens its own database connection.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
