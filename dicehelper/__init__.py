"""dice-helper: database-polling Telegram dice worker."""

__version__ = "0.3.0"
