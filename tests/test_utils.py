"""Tests for background tasks and logging helpers."""

from __future__ import annotations

import asyncio
import logging
import sys

import pytest
import structlog

from pagemod import utils
from pagemod.logger import _log_uncaught, install_excepthook, plugin_context, set_level
from pagemod.utils import create_background_task


class _ErrorRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []

    def error(self, msg: str, **kw) -> None:
        self.calls.append((msg, kw))


class TestCreateBackgroundTask:
    """Fire-and-forget tasks must still surface their failures."""

    @pytest.mark.asyncio
    async def test_successful_task_completes(self):
        result_holder: list[str] = []

        async def success():
            result_holder.append("done")

        task = create_background_task(success(), name="test-success")
        await task
        assert result_holder == ["done"]

    @pytest.mark.asyncio
    async def test_failed_task_is_logged(self, monkeypatch):
        recorder = _ErrorRecorder()
        monkeypatch.setattr(utils, "logger", recorder)

        async def fail():
            raise RuntimeError("intentional failure")

        task = create_background_task(fail(), name="test-failure")
        with pytest.raises(RuntimeError, match="intentional failure"):
            await task
        await asyncio.sleep(0)

        msg, kw = recorder.calls[0]
        assert msg == "Background task failed"
        assert kw["task_name"] == "test-failure"
        assert isinstance(kw["exc_info"], RuntimeError)

    @pytest.mark.asyncio
    async def test_cancelled_task_is_not_logged(self, monkeypatch):
        recorder = _ErrorRecorder()
        monkeypatch.setattr(utils, "logger", recorder)

        task = create_background_task(asyncio.sleep(10), name="test-cancel")
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_reference_held_until_done(self):
        gate = asyncio.Event()

        async def wait():
            await gate.wait()

        task = create_background_task(wait())
        assert task in utils._background_tasks
        gate.set()
        await task
        await asyncio.sleep(0)
        assert task not in utils._background_tasks


class TestLogging:
    def test_plugin_context_binds_and_restores(self):
        with plugin_context("p1", event_type="click"):
            assert structlog.contextvars.get_contextvars() == {
                "plugin_id": "p1",
                "event_type": "click",
            }
        assert "plugin_id" not in structlog.contextvars.get_contextvars()

    def test_set_level(self):
        root = logging.getLogger()
        previous = root.level
        try:
            set_level("warning")
            assert root.level == logging.WARNING
            set_level("nonsense")
            assert root.level == logging.INFO
        finally:
            root.setLevel(previous)

    def test_import_leaves_excepthook_alone(self):
        assert sys.excepthook is not _log_uncaught

    def test_install_excepthook(self, monkeypatch):
        monkeypatch.setattr(sys, "excepthook", sys.__excepthook__)
        install_excepthook()
        assert sys.excepthook is _log_uncaught

    def test_uncaught_exception_exits(self):
        try:
            raise ValueError("late")
        except ValueError as exc:
            error = exc
        with pytest.raises(SystemExit) as excinfo:
            _log_uncaught(ValueError, error, error.__traceback__)
        assert excinfo.value.code == 1
