"""Tests for the one-off resync script.

get_sync_service is imported lazily inside _resync(), so we patch it at its
source module path.
"""
from unittest.mock import AsyncMock, patch

import pytest

from planner.errors import IntegrationNotFound
from planner.google.sync_service import SyncResult
from planner.scripts.resync import _resync, main


def _service(result=None, error=None):
    service = AsyncMock()
    for name in ("full_sync", "incremental_sync"):
        method = getattr(service, name)
        method.return_value = result or SyncResult(user_id="user-1", mode="incremental")
        method.side_effect = error
    return service


class TestResync:
    @pytest.mark.asyncio
    async def test_incremental_by_default(self):
        service = _service()
        with patch("planner.services.get_sync_service", return_value=service):
            code = await _resync("user-1", full=False)
        assert code == 0
        service.incremental_sync.assert_awaited_once_with("user-1")
        service.full_sync.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_flag(self):
        service = _service(SyncResult(user_id="user-1", mode="full", events_synced=3))
        with patch("planner.services.get_sync_service", return_value=service):
            code = await _resync("user-1", full=True)
        assert code == 0
        service.full_sync.assert_awaited_once_with("user-1")

    @pytest.mark.asyncio
    async def test_skipped_is_not_an_error(self):
        result = SyncResult(user_id="user-1", mode="incremental", skipped=True, reason="not connected")
        with patch("planner.services.get_sync_service", return_value=_service(result)):
            assert await _resync("user-1", full=False) == 0

    @pytest.mark.asyncio
    async def test_failure_exit_code(self):
        service = _service(error=IntegrationNotFound("user-1"))
        with patch("planner.services.get_sync_service", return_value=service):
            assert await _resync("user-1", full=True) == 1


class TestMain:
    def test_parses_arguments(self):
        with patch("planner.scripts.resync._resync", new=AsyncMock(return_value=0)) as mock_resync:
            with pytest.raises(SystemExit) as exc_info:
                main(["user-9", "--full"])
        assert exc_info.value.code == 0
        mock_resync.assert_awaited_once_with("user-9", True)

    def test_user_id_required(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2
