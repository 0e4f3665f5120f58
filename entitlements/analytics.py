"""
Analytics sink - one-way, fire-and-forget event emission

Events emitted by the engine:
- status_resolved: every resolution, with status, source and remote outcome
- unknown_product_id: active entitlement whose product matched no plan
- quota_exhausted: quota check found no sessions left today
- paywall_shown: paywall decision with show=True, with its trigger
- purchase_synced / purchases_restored: cached flag updated by the client

Gating never depends on a sink. ``safe_capture`` is the only way the engine
emits, and it swallows every sink error.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

import aiohttp

from utils.logger import logger


class AnalyticsSink(ABC):
    """Receiver of engine events"""

    @abstractmethod
    def capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """Record an event. May raise; callers go through safe_capture."""


class NullAnalyticsSink(AnalyticsSink):
    """Drops every event"""

    def capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        return None


class LoggingAnalyticsSink(AnalyticsSink):
    """Writes events to the application log"""

    def capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"[ANALYTICS] {event} {properties or {}}")


class RecordingAnalyticsSink(AnalyticsSink):
    """Keeps events in memory, for replays and tests"""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        self.events.append((event, dict(properties or {})))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [props for name, props in self.events if name == event]


class HttpAnalyticsSink(AnalyticsSink):
    """
    Posts events to a PostHog-style ``/capture/`` endpoint.

    Each event is sent from a background task on the running event loop;
    ``capture`` returns immediately. Without a running loop the event is
    logged and dropped.
    """

    def __init__(self, api_base: str, api_key: str, distinct_id: str = "anonymous", timeout_seconds: float = 5.0):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.distinct_id = distinct_id
        self.timeout_seconds = timeout_seconds
        self._pending: set = set()

    def capture(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        payload = {
            "api_key": self.api_key,
            "event": event,
            "distinct_id": self.distinct_id,
            "properties": properties or {},
            "timestamp": datetime.now().isoformat(),
        }

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No event loop, analytics event dropped: {event}")
            return

        task = loop.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, payload: Dict[str, Any]) -> bool:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.api_base}/capture/",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    if response.status >= 400:
                        logger.debug(f"Analytics endpoint returned {response.status}")
                        return False
                    return True
        except Exception as e:
            logger.debug(f"Analytics send failed: {e}")
            return False

    @property
    def pending_count(self) -> int:
        return len(self._pending)


def safe_capture(sink: Optional[AnalyticsSink], event: str, properties: Optional[Dict[str, Any]] = None) -> None:
    """Emit an event; sink failures are logged and dropped"""
    if sink is None:
        return
    try:
        sink.capture(event, properties or {})
    except Exception as e:
        logger.debug(f"Analytics sink failed for '{event}': {e}")


def create_analytics_sink(settings, distinct_id: str = "anonymous") -> AnalyticsSink:
    """Build the sink described by settings"""
    if settings.ANALYTICS_URL and settings.ANALYTICS_API_KEY:
        return HttpAnalyticsSink(settings.ANALYTICS_URL, settings.ANALYTICS_API_KEY, distinct_id=distinct_id)
    return LoggingAnalyticsSink()
