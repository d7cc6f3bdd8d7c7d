from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from spanlight.services.contracts import EmittedResult

logger = logging.getLogger(__name__)


class LabelingSession:
    """Delivers labeling results to one consumer, swallowing exact repeats.

    The memo holds a single ``signature::source`` key, so the same result
    arriving twice in a row from the same source is delivered once, while a
    cached result followed by the network result for the same text is
    delivered twice.
    """

    def __init__(self, on_result: Callable[[EmittedResult], Any] | None) -> None:
        self._on_result = on_result
        self._last_key: str | None = None

    @property
    def last_key(self) -> str | None:
        return self._last_key

    def reset(self) -> None:
        self._last_key = None

    def emit(self, result: Mapping[str, Any] | None, source: str) -> bool:
        if self._on_result is None or not result:
            return False
        spans = result.get("spans")
        if not spans:
            return False

        signature = result.get("signature") or ""
        key = f"{signature}::{source}"
        if key == self._last_key:
            logger.debug("labeling_result_deduplicated", extra={"source": source})
            return False
        self._last_key = key

        self._on_result(
            EmittedResult(
                spans=list(spans),
                meta=result.get("meta"),
                text=result.get("text") or "",
                signature=signature,
                cache_id=result.get("cacheId"),
                source=source,
            )
        )
        return True


def create_result_emitter(
    on_result: Callable[[EmittedResult], Any] | None,
) -> Callable[[Mapping[str, Any] | None, str], bool]:
    return LabelingSession(on_result).emit
