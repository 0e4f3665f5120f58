"""
Remote Entitlement Provider - billing ledger lookups

The ledger is authoritative when reachable. Every failure mode (network
error, timeout, missing configuration, unparseable body) is reported as
RemoteOutcome.UNKNOWN, never as INACTIVE.

Lookups are bounded by a single timeout budget and never retried here;
retries belong to the caller.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import aiohttp

from entitlements.errors import RemoteError
from entitlements.models import RemoteEntitlement, RemoteLookup, PeriodType
from utils.logger import logger


class RemoteEntitlementProvider(ABC):
    """Source of paid entitlements"""

    @abstractmethod
    async def fetch_entitlement(self, user_id: str) -> RemoteLookup:
        """Look up the user's entitlement. Must not raise."""


class OfflineProvider(RemoteEntitlementProvider):
    """Provider used when billing is not configured (sandbox/dev builds)"""

    def __init__(self, reason: str = "billing not configured"):
        self.reason = reason

    async def fetch_entitlement(self, user_id: str) -> RemoteLookup:
        return RemoteLookup.unreachable(self.reason)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by the ledger (UTC, 'Z' suffix)"""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise RemoteError(f"Invalid date in ledger response: {value}") from e


def parse_subscriber_response(
    payload: Dict[str, Any],
    entitlement_id: str,
    now: Optional[datetime] = None,
) -> RemoteLookup:
    """
    Interpret a RevenueCat ``GET /subscribers/{id}`` body.

    Args:
        payload: Decoded JSON body
        entitlement_id: Entitlement that unlocks premium (e.g. "premium")
        now: Reference time for expiry comparison (UTC now by default)

    Returns:
        ACTIVE lookup with the entitlement, or INACTIVE with
        ``had_entitlement`` set when a lapsed entitlement is on record

    Raises:
        RemoteError: when the body does not have the expected shape
    """
    subscriber = payload.get("subscriber") if isinstance(payload, dict) else None
    if not isinstance(subscriber, dict):
        raise RemoteError("Ledger response has no subscriber object")

    entitlements = subscriber.get("entitlements") or {}
    if not isinstance(entitlements, dict):
        raise RemoteError("Ledger entitlements is not an object")

    entry = entitlements.get(entitlement_id)
    if not entry:
        return RemoteLookup.inactive(had_entitlement=False)
    if not isinstance(entry, dict):
        raise RemoteError(f"Entitlement '{entitlement_id}' is not an object")

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.astimezone(timezone.utc)

    product_id = entry.get("product_identifier") or ""
    expires_at = _parse_date(entry.get("expires_date"))

    # No expiry means a non-expiring grant
    active = expires_at is None or expires_at > now
    if not active:
        return RemoteLookup.inactive(had_entitlement=True)

    subscriptions = subscriber.get("subscriptions") or {}
    subscription = subscriptions.get(product_id) or {}
    period = str(subscription.get("period_type") or "normal").lower()
    period_type = PeriodType.TRIAL if period == "trial" else PeriodType.NORMAL

    return RemoteLookup.active(RemoteEntitlement(
        active=True,
        product_id=product_id,
        period_type=period_type,
        expires_at=expires_at,
    ))


class RevenueCatProvider(RemoteEntitlementProvider):
    """
    Queries the RevenueCat REST API for a subscriber's entitlements.

    Usage:
        provider = RevenueCatProvider(api_key, entitlement_id="premium")
        lookup = await provider.fetch_entitlement(user_id)
    """

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.revenuecat.com/v1",
        entitlement_id: str = "premium",
        timeout_seconds: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.entitlement_id = entitlement_id
        self.timeout_seconds = timeout_seconds
        self._session = session

    async def _get_subscriber(self, session: aiohttp.ClientSession, user_id: str) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with session.get(
            f"{self.api_base}/subscribers/{user_id}",
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
        ) as response:
            if response.status == 200:
                return await response.json()
            elif response.status == 401:
                raise RemoteError("Ledger authentication failed", status_code=401)
            elif response.status == 429:
                raise RemoteError("Ledger rate limited", status_code=429)
            else:
                raise RemoteError(f"Ledger error: {response.status}", status_code=response.status)

    async def _fetch(self, user_id: str) -> Dict[str, Any]:
        if self._session is not None:
            return await self._get_subscriber(self._session, user_id)
        async with aiohttp.ClientSession() as session:
            return await self._get_subscriber(session, user_id)

    async def fetch_entitlement(self, user_id: str) -> RemoteLookup:
        if not user_id:
            return RemoteLookup.unreachable("no user id")

        try:
            # Whole-call budget, covers connection setup and body read
            payload = await asyncio.wait_for(self._fetch(user_id), timeout=self.timeout_seconds)
            return parse_subscriber_response(payload, self.entitlement_id)
        except asyncio.TimeoutError:
            logger.warning(f"Entitlement lookup timed out after {self.timeout_seconds}s, treating as unreachable")
            return RemoteLookup.unreachable("timeout")
        except aiohttp.ClientError as e:
            logger.warning(f"Entitlement lookup failed (network): {e}")
            return RemoteLookup.unreachable(f"network: {e}")
        except RemoteError as e:
            logger.warning(f"Entitlement lookup failed: {e.message}")
            return RemoteLookup.unreachable(e.message)
        except Exception as e:
            logger.error(f"Unexpected entitlement lookup error: {e}")
            return RemoteLookup.unreachable(str(e))


def create_remote_provider(settings) -> RemoteEntitlementProvider:
    """Build the ledger provider described by settings"""
    if not settings.REVENUECAT_API_KEY:
        logger.info("No billing API key configured, entitlement lookups run offline")
        return OfflineProvider()

    return RevenueCatProvider(
        api_key=settings.REVENUECAT_API_KEY,
        api_base=settings.REVENUECAT_API_URL,
        entitlement_id=settings.ENTITLEMENT_ID,
        timeout_seconds=settings.REMOTE_TIMEOUT_SECONDS,
    )
