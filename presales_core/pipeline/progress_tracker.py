"""Ingestion progress tracking with callback-based listener notification.

The ingestion pipeline publishes every :class:`IngestionState` it produces
to an :class:`IngestionProgressTracker`, which keeps the latest snapshot
per document and forwards it to the listeners registered for that
document.  Listeners registered under ``"*"`` receive every update.

Listeners may be sync or async.  A listener that raises is logged and
skipped; it never affects the pipeline run or the other listeners.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from presales_core.models.pipeline import IngestionState
from presales_core.utils.logging import get_logger

ALL_DOCUMENTS = "*"


class IngestionProgressTracker:
    """Stores the latest ingestion state per document and broadcasts it."""

    def __init__(self) -> None:
        self._states: dict[str, IngestionState] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def update(self, state: IngestionState, message: str = "") -> None:
        """Record *state* and notify listeners of its document."""
        self._states[state.document_id] = state

        self._logger.debug(
            "ingestion_progress",
            document_id=state.document_id,
            version_id=state.version_id,
            stage=state.stage.value,
            progress=round(state.progress_percent, 1),
            message=message,
        )

        listeners = self._listeners.get(state.document_id, []) + self._listeners.get(
            ALL_DOCUMENTS, []
        )
        for callback in listeners:
            try:
                result = callback(state, message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    document_id=state.document_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )

    def register_listener(self, document_id: str, callback: Callable) -> None:
        """Register ``callback(state, message)`` for *document_id* (or ``"*"``)."""
        listeners = self._listeners.setdefault(document_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, document_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(document_id, [])
        if callback in listeners:
            listeners.remove(callback)

    def get_status(self, document_id: str) -> IngestionState | None:
        return self._states.get(document_id)
