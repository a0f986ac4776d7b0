class TokenStampError(Exception):
    """Base error for Token Stamp domain exceptions."""


class ConfigError(TokenStampError):
    """Raised when a placement configuration file cannot be loaded or validated."""


class DownloadError(TokenStampError):
    """Raised when a remote asset cannot be resolved or materialized locally."""


class EntityImportError(TokenStampError):
    """Raised when an entity cannot be imported from a compendium pack."""


class FormulaError(TokenStampError):
    """Raised when a dice formula cannot be parsed or evaluated."""


class InvariantViolation(TokenStampError):
    """Raised in strict mode when the session reaches an impossible state."""
