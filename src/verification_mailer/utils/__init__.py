"""
Shared adapters for the verification mailer:

- logger.py           → structured JSON logging
- secrets.py          → AWS Secrets Manager integration
- sendgrid_client.py  → SendGrid mail sender
- db.py               → Postgres verification-timestamp update
"""
