"""
Content-addressed cache for labeling results.

The key covers every input that changes the classifier's answer: options,
policy and the text itself (through a short hash, optionally namespaced by
the caller's ``cache_id``). Entries also keep the full text so a hash
collision can never serve spans computed for different text.

The memory tier is an LRU with a TTL. With ``SPAN_CACHE_PERSIST`` enabled a
SQL tier sits behind it; every tier failure is logged, counted and treated
as a miss.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from spanlight.core.exceptions import CacheError
from spanlight.core.metrics import record_cache_lookup
from spanlight.core.settings import settings
from spanlight.db.models import SpanLabelingCacheRecord
from spanlight.db.session import get_sessionmaker
from spanlight.services.contracts import LabelingRequest
from spanlight.text.normalization import hash_string, serialize_policy

logger = logging.getLogger(__name__)


def _key_part(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _payload_mapping(payload: object) -> Mapping[str, Any]:
    if isinstance(payload, LabelingRequest):
        return {**payload.to_payload(), "cacheId": payload.cache_id}
    if isinstance(payload, Mapping):
        return payload
    return {}


def build_cache_key(payload: object, hash_fn: Callable[[str], str] = hash_string) -> str:
    """Deterministic cache key for a labeling request.

    Accepts a :class:`LabelingRequest` or a camelCase payload mapping.
    Policy entries are serialized with sorted keys, so insertion order does
    not change the key.
    """
    data = _payload_mapping(payload)
    text = data.get("text") or ""
    cache_id = data.get("cacheId")
    base_id = cache_id.strip() if isinstance(cache_id, str) and cache_id.strip() else None
    derived_id = f"{base_id}::{hash_fn(text)}" if base_id else f"anon::{hash_fn(text)}"
    return "::".join(
        [
            _key_part(data.get("maxSpans")),
            _key_part(data.get("minConfidence")),
            _key_part(data.get("templateVersion")),
            serialize_policy(data.get("policy")),
            derived_id,
        ]
    )


@dataclass
class CacheEntry:
    spans: list[dict[str, Any]]
    meta: dict[str, Any] | None
    text: str
    cache_id: str | None
    signature: str
    timestamp: float = field(default_factory=time.time)

    def age_seconds(self, now: float | None = None) -> float:
        return max(0.0, (now if now is not None else time.time()) - self.timestamp)


class SqlCacheStore:
    """SQL tier backed by ``span_labeling_cache``."""

    def get(self, key: str) -> CacheEntry | None:
        try:
            with get_sessionmaker()() as db:
                record = db.get(SpanLabelingCacheRecord, key)
                if record is None:
                    return None
                return CacheEntry(
                    spans=list(record.spans or []),
                    meta=record.meta,
                    text=record.text,
                    cache_id=record.cache_id,
                    signature=record.signature,
                    timestamp=record.stored_at,
                )
        except (SQLAlchemyError, RuntimeError) as exc:
            raise CacheError("span cache read failed", detail=str(exc)) from exc

    def set(self, key: str, entry: CacheEntry) -> None:
        try:
            with get_sessionmaker()() as db:
                record = db.get(SpanLabelingCacheRecord, key)
                if record is None:
                    record = SpanLabelingCacheRecord(cache_key=key)
                    db.add(record)
                record.text = entry.text
                record.cache_id = entry.cache_id
                record.signature = entry.signature
                record.spans = entry.spans
                record.meta = entry.meta
                record.stored_at = entry.timestamp
                db.commit()
        except (SQLAlchemyError, RuntimeError) as exc:
            raise CacheError("span cache write failed", detail=str(exc)) from exc

    def delete_text(self, text: str) -> int:
        try:
            with get_sessionmaker()() as db:
                keys = db.execute(
                    select(SpanLabelingCacheRecord.cache_key).where(SpanLabelingCacheRecord.text == text)
                ).scalars().all()
                if keys:
                    db.execute(delete(SpanLabelingCacheRecord).where(SpanLabelingCacheRecord.cache_key.in_(keys)))
                    db.commit()
                return len(keys)
        except (SQLAlchemyError, RuntimeError) as exc:
            raise CacheError("span cache delete failed", detail=str(exc)) from exc

    def clear(self) -> None:
        try:
            with get_sessionmaker()() as db:
                db.execute(delete(SpanLabelingCacheRecord))
                db.commit()
        except (SQLAlchemyError, RuntimeError) as exc:
            raise CacheError("span cache clear failed", detail=str(exc)) from exc


class LabelingCache:
    def __init__(
        self,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
        store: SqlCacheStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max_entries if max_entries is not None else settings.span_cache_max_entries
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.span_cache_ttl_seconds
        self._store = store
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "errors": 0}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self.ttl_seconds > 0 and entry.age_seconds(self._clock()) >= self.ttl_seconds

    def _evict(self) -> None:
        while len(self._entries) > self.max_entries:
            oldest_key, _ = self._entries.popitem(last=False)
            logger.debug("span_cache_evicted", extra={"cache_key": oldest_key})

    def _remember(self, key: str, entry: CacheEntry) -> None:
        self._entries.pop(key, None)
        self._entries[key] = entry
        self._evict()

    def get(self, payload: LabelingRequest | Mapping[str, Any]) -> CacheEntry | None:
        """Cached entry for ``payload`` or ``None``.

        A hit requires the stored text to equal the request text exactly.
        """
        data = _payload_mapping(payload)
        text = data.get("text") or ""
        key = build_cache_key(data)

        entry = self._entries.get(key)
        if entry is not None and self._expired(entry):
            self._entries.pop(key, None)
            entry = None
        if entry is not None and entry.text == text:
            self._entries.move_to_end(key)
            self._stats["hits"] += 1
            record_cache_lookup("memory", True)
            return entry
        record_cache_lookup("memory", False)

        if self._store is not None:
            try:
                stored = self._store.get(key)
            except CacheError as exc:
                self._stats["errors"] += 1
                logger.warning("span_cache_store_read_failed", extra={"error": exc.detail})
                stored = None
            if stored is not None and stored.text == text and not self._expired(stored):
                record_cache_lookup("sql", True)
                self._remember(key, stored)
                self._stats["hits"] += 1
                return stored
            record_cache_lookup("sql", False)

        self._stats["misses"] += 1
        return None

    def set(
        self,
        payload: LabelingRequest | Mapping[str, Any],
        spans: list[dict[str, Any]],
        meta: dict[str, Any] | None = None,
        signature: str | None = None,
    ) -> CacheEntry | None:
        data = _payload_mapping(payload)
        text = data.get("text") or ""
        if not text:
            return None
        cache_id = data.get("cacheId")
        entry = CacheEntry(
            spans=list(spans or []),
            meta=meta,
            text=text,
            cache_id=cache_id if isinstance(cache_id, str) else None,
            signature=signature or hash_string(text),
            timestamp=self._clock(),
        )
        key = build_cache_key(data)
        self._remember(key, entry)
        self._stats["sets"] += 1

        if self._store is not None:
            try:
                self._store.set(key, entry)
            except CacheError as exc:
                self._stats["errors"] += 1
                logger.warning("span_cache_store_write_failed", extra={"error": exc.detail})
        return entry

    def invalidate_text(self, text: str) -> int:
        """Drop every entry computed for ``text``, whatever its options."""
        keys = [key for key, entry in self._entries.items() if entry.text == text]
        for key in keys:
            del self._entries[key]
        removed = len(keys)
        if self._store is not None:
            try:
                removed += self._store.delete_text(text)
            except CacheError as exc:
                self._stats["errors"] += 1
                logger.warning("span_cache_store_delete_failed", extra={"error": exc.detail})
        return removed

    def cleanup_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        if self._store is not None:
            try:
                self._store.clear()
            except CacheError as exc:
                self._stats["errors"] += 1
                logger.warning("span_cache_store_clear_failed", extra={"error": exc.detail})
        logger.info("span_cache_cleared")

    def stats(self) -> dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
            "persistent": self._store is not None,
        }


_shared_cache: LabelingCache | None = None


def get_labeling_cache() -> LabelingCache:
    """Process-wide cache used by the HTTP surface."""
    global _shared_cache
    if _shared_cache is None:
        _shared_cache = LabelingCache(store=SqlCacheStore() if settings.span_cache_persist else None)
    return _shared_cache


def reset_labeling_cache() -> None:
    global _shared_cache
    _shared_cache = None
