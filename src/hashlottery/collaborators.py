"""
hashlottery/collaborators.py

Narrow interfaces to the world outside the engine.

EntropySource supplies the external seed an epoch is opened on (in
production, a recent public block hash). NotificationSink receives
``epoch_opened`` / ``epoch_closed`` events. Both are awaited under a
timeout by the engine and their failures are logged, never raised.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("hashlottery.collaborators")

EVENT_EPOCH_OPENED = "epoch_opened"
EVENT_EPOCH_CLOSED = "epoch_closed"


# ============================================================================
# ENTROPY SOURCES
# ============================================================================

class EntropySource(ABC):
    """Provides the external seed for a new epoch."""

    @abstractmethod
    async def fetch_seed(self) -> str:
        """Return a hex seed string."""
        pass


class StaticEntropySource(EntropySource):
    """Always returns the same seed."""

    def __init__(self, seed: str):
        self.seed = seed

    async def fetch_seed(self) -> str:
        return self.seed


class RandomEntropySource(EntropySource):
    """Fresh 32-byte seed from the OS CSPRNG. For demos and local runs."""

    async def fetch_seed(self) -> str:
        return secrets.token_hex(32)


# ============================================================================
# NOTIFICATION SINKS
# ============================================================================

class NotificationSink(ABC):
    """Receives lottery events."""

    @abstractmethod
    async def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes events to the log."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        logger.log(self.level, f"[{event_kind}] {payload.get('epoch_id', '')}")


class MemoryNotificationSink(NotificationSink):
    """Keeps every event in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        self.events.append((event_kind, payload))

    def of_kind(self, event_kind: str) -> List[Dict[str, Any]]:
        return [payload for kind, payload in self.events if kind == event_kind]

    def last(self, event_kind: Optional[str] = None) -> Optional[Dict[str, Any]]:
        for kind, payload in reversed(self.events):
            if event_kind is None or kind == event_kind:
                return payload
        return None
