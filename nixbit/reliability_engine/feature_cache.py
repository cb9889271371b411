"""Content-addressed caches for static risk feature vectors."""

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict

from nixbit.reliability_engine.models.static_risk import StaticRiskFeatures


class FeatureCache(ABC):
    """Key-value store for feature vectors, keyed by content hash."""

    @abstractmethod
    def get(self, key: str) -> StaticRiskFeatures | None:
        """Return the cached features for key, or None."""

    @abstractmethod
    def set(self, key: str, features: StaticRiskFeatures) -> None:
        """Store features under key."""


class NullFeatureCache(FeatureCache):
    """Cache that never stores anything."""

    def get(self, key: str) -> StaticRiskFeatures | None:
        """Always miss."""
        return None

    def set(self, key: str, features: StaticRiskFeatures) -> None:
        """Discard features."""


class InMemoryFeatureCache(FeatureCache):
    """Bounded least-recently-used cache, safe to share between threads."""

    def __init__(self, max_size: int = 1024) -> None:
        """Initialize cache holding at most max_size entries."""
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: OrderedDict[str, StaticRiskFeatures] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> StaticRiskFeatures | None:
        """Return cached features and mark them recently used."""
        with self._lock:
            features = self._entries.get(key)
            if features is not None:
                self._entries.move_to_end(key)
            return features

    def set(self, key: str, features: StaticRiskFeatures) -> None:
        """Store features, evicting the least recently used entry when full."""
        with self._lock:
            self._entries[key] = features
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
