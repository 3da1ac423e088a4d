"""Alert delivery."""

from .telegram_bot import AlertNotifier

__all__ = ["AlertNotifier"]
