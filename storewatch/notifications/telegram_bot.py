"""Telegram notifications for store alerts."""

import html
from typing import Any

import structlog

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from ..models import Alert, AlertCategory, Severity, Store

logger = structlog.get_logger(__name__)


class AlertNotifier:
    """Sends alert messages to the chat that owns a store."""

    def __init__(
        self,
        bot_token: str | None = None,
        fallback_chat_id: str | None = None,
        dashboard_url: str | None = None,
        bot: Any = None,
    ):
        """Initialize the notifier.

        Args:
            bot_token: Telegram bot token; notifications are disabled without one
            fallback_chat_id: Chat used for stores that have no owner chat
            dashboard_url: Base URL of the dashboard linked from messages
            bot: Pre-built bot object (tests inject a fake here)
        """
        self.fallback_chat_id = fallback_chat_id
        self.dashboard_url = (dashboard_url or "").rstrip("/") or None
        self.bot = bot

        if self.bot is None and bot_token:
            self.bot = Bot(token=bot_token)
            logger.info("Telegram notifier initialized")
        elif self.bot is None:
            logger.warning("Telegram bot token not configured, alerts will not be sent")

    def resolve_recipient(self, store: Store | None) -> str | None:
        """Pick the chat that should receive alerts for ``store``."""
        if store is not None and store.owner_chat_id:
            return str(store.owner_chat_id)
        return self.fallback_chat_id

    async def notify(self, alert: Alert, store: Store | None) -> bool:
        """Send ``alert``; never raises.

        Returns:
            True if a message was delivered
        """
        chat_id = self.resolve_recipient(store)
        if not self.bot or not chat_id:
            logger.info("No alert recipient, skipping notification", store_id=alert.store_id)
            return False

        if alert.category == AlertCategory.AVAILABILITY:
            message = self.format_availability_alert(alert, store)
        else:
            message = self.format_visual_alert(alert, store)
        return await self._send_message(chat_id, message, store_id=alert.store_id)

    def format_visual_alert(self, alert: Alert, store: Store | None) -> str:
        """Format a visual change alert."""
        url = html.escape(store.full_url if store else f"store {alert.store_id}")
        marker = "🔴" if alert.severity == Severity.HIGH else "🟡"
        lines = [
            f"🚨 <b>Visual change on {url}</b>",
            "",
            f"{marker} Changed: <b>{alert.diff_percentage}%</b> ({alert.severity.value} severity)",
        ]
        if alert.before_url:
            lines.append(f'• <a href="{html.escape(alert.before_url)}">Before</a>')
        if alert.after_url:
            lines.append(f'• <a href="{html.escape(alert.after_url)}">After</a>')
        if alert.diff_url:
            lines.append(f'• <a href="{html.escape(alert.diff_url)}">Highlighted diff</a>')
        if self.dashboard_url and alert.id is not None:
            lines.append("")
            lines.append(f'<a href="{html.escape(self.dashboard_url)}/alerts/{alert.id}">View in dashboard</a>')
        return "\n".join(lines)

    def format_availability_alert(self, alert: Alert, store: Store | None) -> str:
        """Format a store-down alert."""
        url = html.escape(store.full_url if store else f"store {alert.store_id}")
        lines = [
            f"🚨 <b>Your store is DOWN: {url}</b>",
            "",
            "The store has been unreachable for multiple consecutive checks.",
            "Please check your hosting/server immediately.",
        ]
        if self.dashboard_url:
            lines.append("")
            lines.append(f'<a href="{html.escape(self.dashboard_url)}">View in dashboard</a>')
        return "\n".join(lines)

    async def _send_message(self, chat_id: str, message: str, *, store_id: int) -> bool:
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=message,
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
            )
            logger.info("Alert notification sent", store_id=store_id, chat_id=chat_id)
            return True

        except TelegramError as e:
            logger.error("Failed to send Telegram notification", store_id=store_id, error=str(e))
            return False
        except Exception as e:
            logger.error("Unexpected error sending Telegram notification", store_id=store_id, error=str(e))
            return False
