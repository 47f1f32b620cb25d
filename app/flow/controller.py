"""
app/flow/controller.py

Purpose: Delivery of the attribution record from the Mini App to the relay

- One POST per attempt with a hard timeout
- Bounded automatic retries for timeouts, network errors and 5xx
- 404 means "new user, not in CRM yet" and counts as success
- On success: hand the attribution to the bot, then close or open a deep link
- On exhausted retries: error state; the user may retry manually

Retry state lives on DeliverySession, never on the module or controller.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.flow.host import HostApp, LoggingHost
from app.flow.states import DeliveryState, get_state_metadata, is_valid_transition
from app.schemas.bridge import BotAttributionMessage, BridgeAttribution
from utils.constants import (
    CONNECTION_FAILED_MESSAGE,
    INIT_FAILED_MESSAGE,
    NETWORK_ERROR_MESSAGE,
    SERVER_ERROR_MESSAGE,
    TIMEOUT_MESSAGE,
)

logger = get_logger(__name__)

StateListener = Callable[[DeliveryState, str], None]


@dataclass
class DeliveryConfig:
    endpoint_url: str
    timeout_ms: int = 10000
    max_retries: int = 2
    retry_delay_ms: int = 1000
    close_delay_ms: int = 500
    deep_link: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "DeliveryConfig":
        return cls(
            endpoint_url=settings.BRIDGE_ENDPOINT_URL,
            timeout_ms=settings.BRIDGE_TIMEOUT_MS,
            max_retries=settings.BRIDGE_MAX_RETRIES,
            retry_delay_ms=settings.BRIDGE_RETRY_DELAY_MS,
            close_delay_ms=settings.BRIDGE_CLOSE_DELAY_MS,
            deep_link=settings.BRIDGE_DEEP_LINK,
        )


class DeliveryError(Exception):
    """Base class for a failed delivery attempt."""

    retryable = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DeliveryTimeout(DeliveryError):
    def __init__(self, message: str = TIMEOUT_MESSAGE):
        super().__init__(message)


class DeliveryNetworkError(DeliveryError):
    def __init__(self, message: str = NETWORK_ERROR_MESSAGE):
        super().__init__(message)


class DeliveryServerError(DeliveryError):
    """Relay answered with a non-2xx status."""

    def __init__(self, status: int, body: Any = None):
        self.status = status
        self.body = body
        super().__init__(SERVER_ERROR_MESSAGE.format(status=status))

    @property
    def retryable(self) -> bool:
        return self.status >= 500

    @property
    def contact_not_found(self) -> bool:
        return self.status == 404


@dataclass
class DeliverySession:
    """
    One Mini App launch.

    `extract` is called lazily when `record` is still empty, so a manual
    retry can pick up a Telegram context that was not ready the first time.
    """
    record: Optional[BridgeAttribution] = None
    extract: Optional[Callable[[], Optional[BridgeAttribution]]] = None
    state: DeliveryState = DeliveryState.IDLE
    retry_count: int = 0
    attempts: int = 0
    message: str = ""
    last_error: Optional[DeliveryError] = None
    response: Any = None
    new_user: bool = False


class DeliveryController:
    """
    Drives a DeliverySession through IDLE -> LOADING -> SUCCESS/ERROR.
    """

    def __init__(
        self,
        config: DeliveryConfig,
        host: Optional[HostApp] = None,
        on_state_change: Optional[StateListener] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.host = host or LoggingHost()
        self.on_state_change = on_state_change
        self._transport = transport
        self._sleep = sleep

    def _transition(self, session: DeliverySession, state: DeliveryState, message: Optional[str] = None):
        if not is_valid_transition(session.state, state):
            raise RuntimeError(f"Invalid delivery transition {session.state.value} -> {state.value}")

        session.state = state
        session.message = message or get_state_metadata(state).message
        logger.info(f"Delivery state: {state.value}", extra={"state": state.value})

        if self.on_state_change:
            self.on_state_change(state, session.message)

    async def send_attribution(self, session: DeliverySession) -> Any:
        """
        POSTs the record once.

        Returns:
            Decoded JSON body, or the raw text when the body is not JSON

        Raises:
            DeliveryTimeout: no response within timeout_ms
            DeliveryNetworkError: transport failure
            DeliveryServerError: non-2xx status
        """
        timeout = self.config.timeout_ms / 1000
        payload = session.record.model_dump(mode="json")

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await asyncio.wait_for(
                    client.post(
                        self.config.endpoint_url,
                        json=payload,
                        headers={"Content-Type": "application/json", "Accept": "application/json"},
                    ),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error("Relay request timeout")
            raise DeliveryTimeout()
        except httpx.RequestError as e:
            logger.error(f"Relay network error: {e}")
            raise DeliveryNetworkError()

        logger.info(f"Relay response status: {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            logger.debug(f"Relay response data: {body}")
            return body

        logger.error(f"Relay error: {response.status_code} {body}")
        raise DeliveryServerError(response.status_code, body)

    async def run(self, session: DeliverySession) -> DeliveryState:
        """
        Runs attempts until success, a terminal error or exhausted retries.
        """
        if session.state == DeliveryState.SUCCESS:
            return session.state

        self._transition(session, DeliveryState.LOADING)

        if session.record is None and session.extract is not None:
            session.record = session.extract()
        if session.record is None:
            self._transition(session, DeliveryState.ERROR, INIT_FAILED_MESSAGE)
            return session.state

        while True:
            session.attempts += 1
            try:
                session.response = await self.send_attribution(session)
                break
            except DeliveryServerError as e:
                if e.contact_not_found:
                    # New user from ads, the bot captures the data via sendData
                    logger.info("Contact not found (new user), handing data to the bot")
                    session.new_user = True
                    session.response = e.body
                    break
                error = e
            except DeliveryError as e:
                error = e

            session.last_error = error
            if error.retryable and session.retry_count < self.config.max_retries:
                session.retry_count += 1
                logger.info(f"Retrying... ({session.retry_count}/{self.config.max_retries})")
                await self._sleep(self.config.retry_delay_ms / 1000)
                self._transition(session, DeliveryState.LOADING)
                continue

            self._transition(
                session,
                DeliveryState.ERROR,
                error.message or CONNECTION_FAILED_MESSAGE,
            )
            return session.state

        await self._complete(session)
        return session.state

    async def retry(self, session: DeliverySession) -> DeliveryState:
        """Manual retry from the error screen; starts a fresh retry budget."""
        if session.state != DeliveryState.ERROR:
            raise RuntimeError(f"Retry is only possible from ERROR, not {session.state.value}")
        session.retry_count = 0
        return await self.run(session)

    async def _complete(self, session: DeliverySession):
        self._transition(session, DeliveryState.SUCCESS)
        self.send_to_bot(session)

        await self._sleep(self.config.close_delay_ms / 1000)

        # Already SUCCESS; a failing host must not undo that
        try:
            if self.config.deep_link:
                logger.info(f"Opening {self.config.deep_link}")
                self.host.open_link(self.config.deep_link)
            else:
                logger.info("Closing Mini App...")
                self.host.close()
        except Exception as e:
            logger.error(f"Failed to leave Mini App: {e}")

    def send_to_bot(self, session: DeliverySession):
        message = BotAttributionMessage.from_attribution(session.record)
        try:
            self.host.send_data(json.dumps(message.model_dump()))
            logger.info(f"Data sent to bot: {message.model_dump()}")
        except Exception as e:
            logger.error(f"Failed to send data to bot: {e}")
