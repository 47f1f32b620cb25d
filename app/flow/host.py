"""
app/flow/host.py

Purpose: The Telegram WebApp host as seen by the delivery controller

- send_data: Telegram.WebApp.sendData (bot receives web_app_data)
- close: Telegram.WebApp.close (user lands in the bot chat)
- open_link: Telegram.WebApp.openTelegramLink (deep link navigation)
"""

from app.core.logging import get_logger

logger = get_logger(__name__)


class HostApp:
    """Interface of the Mini App host. Subclasses talk to a real client."""

    def send_data(self, data: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def open_link(self, url: str) -> None:
        raise NotImplementedError


class LoggingHost(HostApp):
    """
    Standalone host used outside Telegram (development, scripts).
    Records what would have been sent instead of doing it.
    """

    def __init__(self):
        self.sent = []
        self.closed = False
        self.opened_links = []

    def send_data(self, data: str) -> None:
        logger.info(f"Mock: would send data to bot: {data}")
        self.sent.append(data)

    def close(self) -> None:
        logger.info("Mock: would close Mini App")
        self.closed = True

    def open_link(self, url: str) -> None:
        logger.info(f"Mock: would open {url}")
        self.opened_links.append(url)
