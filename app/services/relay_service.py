"""
app/services/relay_service.py

Purpose: Relay an attribution record to the CRM

Flow:
1. Reject records without telegram_id (no CRM call is made)
2. Verify the initData signature when a bot token is configured
3. Create or update the contact (auth strategies in order)
4. Send attribution variables to the inner webhook (flat, then nested)
5. Report a 404 when the CRM knows nothing about the user
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import (
    AuthenticationError,
    ExternalServiceError,
    ResourceNotFoundError,
    ValidationError,
)
from app.core.logging import get_logger, LogContext
from app.schemas.bridge import BridgeAttribution, BridgeResponse, ResponseDetails
from app.services.crm_client import CRMClient, CRMCallResult, CRMServiceError, get_crm_client
from app.services.init_data import InitDataError, verify_init_data

logger = get_logger(__name__)

ATTRIBUTION_SOURCE = "telegram_ads_bridge"


def _telegram_id_as_int(record: BridgeAttribution) -> int:
    try:
        return int(record.telegram_id)
    except (TypeError, ValueError):
        raise ValidationError(
            "telegram_id must be numeric",
            details={"telegram_id": record.telegram_id}
        )


def build_contact_payload(record: BridgeAttribution, bot_id: int) -> Dict[str, Any]:
    """Body for createOrUpdateContact."""
    return {
        "bot_id": bot_id,
        "messenger": "telegram",
        "telegram_id": _telegram_id_as_int(record),
        "name": record.display_name,
        "telegram_username": record.user_data.username or "",
    }


def build_flat_variables(record: BridgeAttribution, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Attribution variables at the top level of the webhook body."""
    telegram_id = record.telegram_id_str
    start_param = record.start_param or ""
    user = record.user_data
    timestamp = record.timestamp or (now or datetime.now(timezone.utc)).isoformat()

    return {
        "telegram_id": telegram_id,
        "start_param": start_param,
        "utm_source": start_param,
        "campaign_tag": start_param,
        "source": ATTRIBUTION_SOURCE,
        "telegram_user_id": telegram_id,
        "telegram_first_name": user.first_name or "",
        "telegram_last_name": user.last_name or "",
        "telegram_username": user.username or "",
        "telegram_language": user.language_code or "",
        "telegram_is_premium": "true" if user.is_premium else "false",
        "telegram_user_name": record.display_name,
        "bridge_timestamp": timestamp,
        "bridge_platform": record.platform or "unknown",
    }


def build_nested_variables(
    record: BridgeAttribution,
    variables: Dict[str, Any],
    contact_id: Optional[Any] = None,
) -> Dict[str, Any]:
    """Variables wrapped with a contact lookup key."""
    if contact_id is not None:
        return {"contact_by": "id", "search": str(contact_id), "variables": variables}
    return {"contact_by": "telegram_id", "search": record.telegram_id_str, "variables": variables}


class RelayService:
    """
    Reformats attribution records and forwards them to the CRM.
    """

    def __init__(
        self,
        crm: CRMClient,
        bot_token: Optional[str] = None,
        init_data_max_age: int = 0,
    ):
        self.crm = crm
        self.bot_token = bot_token
        self.init_data_max_age = init_data_max_age

    def validate(self, record: BridgeAttribution):
        if not record.telegram_id:
            raise ValidationError("telegram_id is required")
        _telegram_id_as_int(record)

        if self.bot_token:
            try:
                verify_init_data(record.init_data, self.bot_token, self.init_data_max_age)
            except InitDataError as e:
                logger.warning(f"initData rejected: {e}")
                raise AuthenticationError(f"Invalid initData: {e}")

    def payload_formats(
        self, record: BridgeAttribution, contact_id: Optional[Any]
    ) -> List[Tuple[str, Dict[str, Any]]]:
        flat = build_flat_variables(record)
        return [
            ("flat", flat),
            ("nested", build_nested_variables(record, flat, contact_id)),
        ]

    async def relay(self, record: BridgeAttribution) -> BridgeResponse:
        """
        Forwards one attribution record.

        Raises:
            ValidationError: telegram_id missing or not numeric
            AuthenticationError: initData signature rejected
            ResourceNotFoundError: contact neither created nor found
            ExternalServiceError: CRM unreachable
        """
        self.validate(record)

        with LogContext(telegram_id=record.telegram_id_str, start_param=record.start_param or ""):
            logger.info(
                f"Relaying attribution for {record.telegram_id_str} "
                f"(start_param={record.start_param!r}, name={record.display_name!r})"
            )

            try:
                contact = await self.crm.create_or_update_contact(
                    build_contact_payload(record, self.crm.bot_id)
                )
                contact_id = contact.contact_id if contact.ok else None
                webhook = await self.crm.send_inner_webhook(
                    self.payload_formats(record, contact_id)
                )
            except CRMServiceError as e:
                raise ExternalServiceError(str(e))

            self._log_summary(contact, webhook)

            if not contact.ok and all(status == 404 for _, status in webhook.history):
                raise ResourceNotFoundError(
                    "Contact not found in CRM",
                    details={
                        "create_status": contact.status,
                        "webhook_status": webhook.status,
                        "start_param": record.start_param or "",
                    }
                )

            return BridgeResponse(
                success=True,
                message="Contact processed",
                contact_id=contact_id,
                contact_created=contact.ok,
                variables_sent=webhook.ok,
                details=ResponseDetails(
                    create_status=contact.status,
                    webhook_status=webhook.status,
                    webhook_format=webhook.payload_format,
                    auth_strategy=contact.strategy,
                    start_param=record.start_param or "",
                ),
            )

    def _log_summary(self, contact: CRMCallResult, webhook: CRMCallResult):
        logger.info(
            f"Relay finished: contact={contact.status} via {contact.strategy} "
            f"({contact.attempts} attempt(s)), webhook={webhook.status} "
            f"({webhook.payload_format})"
        )
        if not contact.ok:
            logger.warning(f"Contact upsert failed: {contact.body}")
        if not webhook.ok:
            logger.warning(f"Inner webhook failed for every format: {webhook.history}")


def get_relay_service() -> RelayService:
    """FastAPI dependency building the relay on the shared CRM client."""
    return RelayService(
        crm=get_crm_client(),
        bot_token=settings.TELEGRAM_BOT_TOKEN,
        init_data_max_age=settings.INIT_DATA_MAX_AGE_SECONDS,
    )
