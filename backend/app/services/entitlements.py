import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expires_date is not a string: {value!r}")
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def entitlement_active(subscriber: Dict[str, Any], entitlement_id: str, now: Optional[datetime] = None) -> bool:
    """True when the subscriber holds ``entitlement_id`` and it has not expired.

    A null ``expires_date`` is a lifetime entitlement.
    """
    entitlements = subscriber.get("entitlements")
    entitlement = entitlements.get(entitlement_id) if isinstance(entitlements, dict) else None
    if not isinstance(entitlement, dict):
        return False
    try:
        expires = _parse_expiry(entitlement.get("expires_date"))
    except ValueError:
        logger.warning("Unparseable expires_date for entitlement %s", entitlement_id)
        return False
    return expires is None or expires > (now or datetime.now(timezone.utc))


class EntitlementService:
    """Answers "does this user hold entitlement X" from RevenueCat.

    Every failure (missing key, network error, unexpected payload) answers
    False; the caller decides whether to gate.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client

    async def _fetch_subscriber(self, user_id: str) -> Optional[Dict[str, Any]]:
        url = f"{self.settings.REVENUECAT_API_URL.rstrip('/')}/subscribers/{user_id}"
        headers = {"Authorization": f"Bearer {self.settings.REVENUECAT_API_KEY}"}
        if self.client is not None:
            response = await self.client.get(url, headers=headers, timeout=self.settings.REVENUECAT_TIMEOUT_S)
        else:
            async with httpx.AsyncClient(timeout=self.settings.REVENUECAT_TIMEOUT_S) as client:
                response = await client.get(url, headers=headers)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected subscriber payload: {type(data).__name__}")
        subscriber = data.get("subscriber")
        if subscriber is not None and not isinstance(subscriber, dict):
            raise ValueError(f"unexpected subscriber record: {type(subscriber).__name__}")
        return subscriber

    async def has_active_entitlement(self, user_id: str, entitlement_id: Optional[str] = None) -> bool:
        entitlement_id = entitlement_id or self.settings.PRO_ENTITLEMENT_ID
        if not self.settings.REVENUECAT_API_KEY:
            logger.warning("REVENUECAT_API_KEY not set; treating %s as not entitled", user_id)
            return False
        try:
            subscriber = await self._fetch_subscriber(user_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Entitlement check for %s failed: %s", user_id, e)
            return False
        if not subscriber:
            return False
        return entitlement_active(subscriber, entitlement_id)


def get_entitlement_service() -> EntitlementService:
    """Dependency for getting the entitlement service."""
    return EntitlementService(get_settings())
