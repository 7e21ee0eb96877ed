class VerificationMailerError(RuntimeError):
    """Base class for every failure the notifier turns into a 500 result."""


class MalformedInputError(VerificationMailerError):
    """The SNS envelope or its embedded message is unusable."""


class ConfigurationError(VerificationMailerError):
    """A required credential or setting could not be resolved."""


class DeliveryError(VerificationMailerError):
    """The email provider rejected or failed the send."""


class PersistenceError(VerificationMailerError):
    """Connecting to or updating the user table failed."""
