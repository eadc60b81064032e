"""Fan-out / fallback execution across calendar sources."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from calbridge.logging_config import get_logger
from calbridge.modules.calendar.errors import (
    AggregateFailure,
    BackendError,
    CalendarError,
    ConfigurationError,
    EventNotFoundError,
    UnsupportedOperation,
)
from calbridge.modules.calendar.models import Operation, SourceId
from calbridge.modules.calendar.providers import CalendarSource

logger = get_logger(__name__)

T = TypeVar("T")
SourceCall = Callable[[CalendarSource], Awaitable[T]]


class FallbackCoordinator:
    """Runs one operation against the enabled sources.

    Per-source failures are caught here and converted to the error taxonomy.
    Callers only ever see a result, a ConfigurationError, or an
    AggregateFailure naming every source that was tried.
    """

    def __init__(
        self,
        sources: dict[SourceId, CalendarSource],
        enabled: Callable[[], Sequence[SourceId]],
    ) -> None:
        self._sources = sources
        self._enabled = enabled

    def active_sources(self) -> list[CalendarSource]:
        """Enabled sources that have an adapter, in registration order."""
        enabled = list(self._enabled())
        if not enabled:
            raise ConfigurationError("No calendar sources are enabled")
        return [self._sources[source_id] for source_id in enabled if source_id in self._sources]

    def _require_sources(self) -> list[CalendarSource]:
        sources = self.active_sources()
        if not sources:
            raise ConfigurationError("No enabled calendar source has been initialized")
        return sources

    async def _attempt(self, source: CalendarSource, call: SourceCall[T]) -> T:
        try:
            return await call(source)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise BackendError.wrap(source.source, exc) from exc

    async def read_all(self, operation: str, call: SourceCall[list[T]]) -> list[T]:
        """Query every enabled source concurrently and concatenate the results.

        Results keep source-registration order. A failing source is logged
        and skipped; only a failure of every source raises.
        """
        sources = self._require_sources()
        results = await asyncio.gather(
            *(self._attempt(source, call) for source in sources),
            return_exceptions=True,
        )

        merged: list[T] = []
        failures: list[tuple[str, BaseException]] = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error("source_read_failed", source=source.source, operation=operation, error=str(result))
                failures.append((source.source, result))
            else:
                merged.extend(result)

        if len(failures) == len(sources):
            raise AggregateFailure(operation, failures)
        return merged

    async def first_success(
        self,
        operation: str,
        call: SourceCall[T],
        preferred: Optional[SourceId] = None,
    ) -> tuple[SourceId, T]:
        """Try the preferred source, then the rest in order; stop at the first success."""
        sources = self._require_sources()
        if preferred is not None:
            sources = sorted(sources, key=lambda source: source.source != preferred)

        failures: list[tuple[str, BaseException]] = []
        for source in sources:
            try:
                return source.source, await self._attempt(source, call)
            except CalendarError as exc:
                if isinstance(exc, UnsupportedOperation):
                    logger.info("source_skipped", source=source.source, operation=operation)
                else:
                    logger.error("source_call_failed", source=source.source, operation=operation, error=str(exc))
                failures.append((source.source, exc))
        raise AggregateFailure(operation, failures)

    async def delete_everywhere(self, call: SourceCall[None]) -> list[SourceId]:
        """Delete from every enabled source that supports deletion.

        "Not found" counts as success because the event is already gone
        there. Returns the sources that succeeded.
        """
        sources = self._require_sources()
        capable = [source for source in sources if source.supports(Operation.DELETE)]
        failures: list[tuple[str, BaseException]] = [
            (source.source, UnsupportedOperation(source.source, Operation.DELETE))
            for source in sources if source not in capable
        ]

        results = await asyncio.gather(
            *(self._attempt(source, call) for source in capable),
            return_exceptions=True,
        )

        succeeded: list[SourceId] = []
        for source, result in zip(capable, results):
            if isinstance(result, EventNotFoundError):
                logger.info("delete_not_found_treated_as_success", source=source.source)
                succeeded.append(source.source)
            elif isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error("source_delete_failed", source=source.source, error=str(result))
                failures.append((source.source, result))
            else:
                succeeded.append(source.source)

        if not succeeded:
            raise AggregateFailure("delete event", failures)
        return succeeded

    async def run_on(self, source_id: SourceId, operation: str, call: SourceCall[T]) -> T:
        """Route an operation to one explicitly named source."""
        if source_id not in self._enabled():
            raise ConfigurationError(f"Calendar source '{source_id}' is not enabled")
        source = self._sources.get(source_id)
        if source is None:
            raise ConfigurationError(f"Calendar source '{source_id}' is not initialized")
        try:
            return await self._attempt(source, call)
        except UnsupportedOperation as exc:
            raise AggregateFailure(operation, [(source_id, exc)]) from exc
