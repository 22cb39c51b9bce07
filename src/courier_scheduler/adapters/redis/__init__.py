"""Redis-backed persistence (requires the ``redis`` extra)."""

from __future__ import annotations

from .store import RedisKeyValueStore

__all__ = ["RedisKeyValueStore"]
