"""Unit tests for IngestionProgressTracker."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from presales_core.models.pipeline import IngestionStage, IngestionState
from presales_core.pipeline.progress_tracker import ALL_DOCUMENTS, IngestionProgressTracker


def _state(document_id: str = "doc-1", stage: IngestionStage = IngestionStage.CHUNKING) -> IngestionState:
    return IngestionState(document_id=document_id, version_id="ver-1", stage=stage, progress_percent=40.0)


class TestIngestionProgressTracker:
    @pytest.mark.asyncio
    async def test_latest_state_is_kept(self) -> None:
        tracker = IngestionProgressTracker()
        await tracker.update(_state(stage=IngestionStage.EXTRACTING))
        await tracker.update(_state(stage=IngestionStage.EMBEDDING))

        status = tracker.get_status("doc-1")

        assert status is not None and status.stage is IngestionStage.EMBEDDING
        assert tracker.get_status("doc-2") is None

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners_notified(self) -> None:
        tracker = IngestionProgressTracker()
        sync_listener = MagicMock()
        async_listener = AsyncMock()
        tracker.register_listener("doc-1", sync_listener)
        tracker.register_listener("doc-1", async_listener)
        state = _state()

        await tracker.update(state, "chunked")

        sync_listener.assert_called_once_with(state, "chunked")
        async_listener.assert_awaited_once_with(state, "chunked")

    @pytest.mark.asyncio
    async def test_listeners_only_see_their_document(self) -> None:
        tracker = IngestionProgressTracker()
        doc_listener = MagicMock()
        all_listener = MagicMock()
        tracker.register_listener("doc-1", doc_listener)
        tracker.register_listener(ALL_DOCUMENTS, all_listener)

        await tracker.update(_state(document_id="doc-2"))

        doc_listener.assert_not_called()
        all_listener.assert_called_once()

    @pytest.mark.asyncio
    async def test_failing_listener_is_skipped(self) -> None:
        tracker = IngestionProgressTracker()
        broken = MagicMock(side_effect=RuntimeError("listener down"))
        healthy = MagicMock()
        tracker.register_listener("doc-1", broken)
        tracker.register_listener("doc-1", healthy)

        await tracker.update(_state())

        healthy.assert_called_once()
        assert tracker.get_status("doc-1") is not None

    @pytest.mark.asyncio
    async def test_register_is_idempotent_and_unregister_stops_updates(self) -> None:
        tracker = IngestionProgressTracker()
        listener = MagicMock()
        tracker.register_listener("doc-1", listener)
        tracker.register_listener("doc-1", listener)

        await tracker.update(_state())
        tracker.unregister_listener("doc-1", listener)
        tracker.unregister_listener("doc-1", listener)
        await tracker.update(_state())

        assert listener.call_count == 1
