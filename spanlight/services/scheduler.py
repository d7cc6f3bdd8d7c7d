"""
Debounced, cancellable scheduling of labeling requests.

One scheduler owns one logical in-flight request. Every ``schedule`` call
supersedes whatever came before it: a pending debounce is cancelled, an
in-flight run has its token cancelled, and ``request_version`` moves on.
A run that completes after being superseded is discarded without touching
the callbacks.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from spanlight.core.exceptions import ClassifierTimeoutError
from spanlight.core.metrics import record_stale_result
from spanlight.core.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_TABLE: tuple[tuple[int, int], ...] = (
    (100, 50),
    (500, 150),
    (2000, 300),
)
LONG_TEXT_DEBOUNCE_MS = 450


class RequestCancelledError(Exception):
    """Raised by :meth:`CancellationToken.raise_if_cancelled`."""


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.warning("cancellation_callback_failed", exc_info=True)

    def add_callback(self, callback: Callable[[], Any]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError("labeling request was cancelled")


class SchedulerState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    ERROR = "error"
    SUPERSEDED = "superseded"


def calculate_smart_debounce(
    text: str | None,
    table: tuple[tuple[int, int], ...] = DEFAULT_DEBOUNCE_TABLE,
    long_text_ms: int = LONG_TEXT_DEBOUNCE_MS,
) -> int:
    """Debounce delay in milliseconds, growing with the text length."""
    length = len(text or "")
    for limit, delay_ms in table:
        if length < limit:
            return delay_ms
    return long_text_ms


def _payload_text(payload: object) -> str:
    if isinstance(payload, Mapping):
        text = payload.get("text")
    else:
        text = getattr(payload, "text", None)
    return text if isinstance(text, str) else ""


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


RunFn = Callable[[Any, CancellationToken], Awaitable[Any]]


class LabelingScheduler:
    def __init__(
        self,
        run: RunFn,
        on_success: Callable[[Any, Any], Any] | None = None,
        on_error: Callable[[BaseException, Any], Any] | None = None,
        *,
        debounce_ms: int | None = None,
        smart_debounce: bool | None = None,
        debounce_table: tuple[tuple[int, int], ...] | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._run = run
        self._on_success = on_success
        self._on_error = on_error
        self.debounce_ms = settings.span_debounce_ms if debounce_ms is None else debounce_ms
        self.smart_debounce = settings.span_smart_debounce if smart_debounce is None else smart_debounce
        self.debounce_table = debounce_table or DEFAULT_DEBOUNCE_TABLE
        self.timeout_seconds = timeout_seconds

        self.request_id = 0
        self.request_version = 0
        self.state = SchedulerState.IDLE
        self._task: asyncio.Task | None = None
        self._token: CancellationToken | None = None
        self._debouncing = False

    def delay_ms_for(self, payload: object) -> int:
        if self.debounce_ms <= 0:
            return 0
        if not self.smart_debounce:
            return self.debounce_ms
        return calculate_smart_debounce(_payload_text(payload), self.debounce_table)

    def is_current(self, request_id: int, request_version: int) -> bool:
        return request_id == self.request_id and request_version == self.request_version

    def schedule(self, payload: Any, immediate: bool = False) -> asyncio.Task:
        """Supersede pending work and run ``payload`` now or after the debounce."""
        self.cancel_pending()
        self.request_version += 1
        version = self.request_version
        delay_ms = 0 if immediate else self.delay_ms_for(payload)
        self._debouncing = delay_ms > 0
        self.state = SchedulerState.DEBOUNCING if delay_ms > 0 else SchedulerState.IN_FLIGHT
        self._task = asyncio.get_running_loop().create_task(self._execute(payload, version, delay_ms))
        return self._task

    def cancel_pending(self) -> None:
        task = self._task
        if task is not None and not task.done() and self._debouncing:
            task.cancel()
        if self._token is not None:
            self._token.cancel()
            self._token = None
        if task is not None and not task.done():
            self.state = SchedulerState.SUPERSEDED
        self._debouncing = False
        self.request_version += 1

    async def _call_run(self, payload: Any, token: CancellationToken) -> Any:
        if not self.timeout_seconds:
            return await self._run(payload, token)
        try:
            return await asyncio.wait_for(self._run(payload, token), self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            token.cancel()
            raise ClassifierTimeoutError(
                f"Labeling request timed out after {self.timeout_seconds}s",
                detail="classifier timeout",
            ) from exc

    async def _execute(self, payload: Any, version: int, delay_ms: int) -> None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)
        self._debouncing = False
        if version != self.request_version:
            return

        self.request_id += 1
        request_id = self.request_id
        token = CancellationToken()
        self._token = token
        self.state = SchedulerState.IN_FLIGHT

        try:
            result = await self._call_run(payload, token)
        except Exception as exc:
            if token.cancelled or not self.is_current(request_id, version):
                record_stale_result()
                logger.debug(
                    "labeling_error_discarded",
                    extra={"request_id_seq": request_id, "error": str(exc)},
                )
                return
            self._release(token)
            self.state = SchedulerState.ERROR
            await _invoke(self._on_error, exc, payload)
            return

        if token.cancelled or not self.is_current(request_id, version):
            record_stale_result()
            logger.debug("labeling_result_discarded", extra={"request_id_seq": request_id})
            return
        self._release(token)
        self.state = SchedulerState.SUCCESS
        await _invoke(self._on_success, result, payload)

    def _release(self, token: CancellationToken) -> None:
        if self._token is token:
            self._token = None

    async def wait_idle(self) -> None:
        """Wait for the current task, if any, to finish or be cancelled."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        self.cancel_pending()
        await self.wait_idle()
        self.state = SchedulerState.IDLE
