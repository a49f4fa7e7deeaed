"""Tests for the progress animation and report formatting module."""

from __future__ import annotations

import os
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest


class InterruptingEvent:
    """Event whose first ``interrupts`` waits raise KeyboardInterrupt."""

    interrupts = 1

    def __init__(self) -> None:
        self._event = threading.Event()
        self._waits = 0

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        self._waits += 1
        if self._waits <= self.interrupts:
            raise KeyboardInterrupt
        return self._event.wait(timeout)


def _fake_threading(interrupts: int) -> SimpleNamespace:
    event_class = type("Event", (InterruptingEvent,), {"interrupts": interrupts})
    return SimpleNamespace(Thread=threading.Thread, Event=event_class)


class TestRunWithProgress:
    """Test run_with_progress animation wrapper."""

    def test_returns_task_result(self) -> None:
        """Successful task result is returned."""
        from progress import run_with_progress

        result = run_with_progress(lambda: 42)
        assert result == 42

    def test_propagates_task_exception(self) -> None:
        """Exceptions from the task are re-raised."""
        from progress import run_with_progress

        def failing_task() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            run_with_progress(failing_task)

    def test_reads_progress_state(self) -> None:
        """Animation reads current message from progress_state dict."""
        from progress import run_with_progress

        state: dict[str, str] = {"message": "initial"}

        def task() -> str:
            state["message"] = "updated"
            return "done"

        result = run_with_progress(task, progress_state=state)
        assert result == "done"
        assert state["message"] == "updated"

    def test_handles_none_progress_state(self) -> None:
        """Works when progress_state is None."""
        from progress import run_with_progress

        assert run_with_progress(lambda: "ok", progress_state=None) == "ok"

    def test_interrupt_calls_handler(self) -> None:
        """Ctrl+C invokes on_interrupt and waits for the task to finish."""
        import progress

        release = threading.Event()
        on_interrupt = MagicMock(side_effect=release.set)

        def task() -> str:
            release.wait(5)
            return "stopped"

        with patch.object(progress, "threading", _fake_threading(1)):
            result = progress.run_with_progress(task, on_interrupt=on_interrupt)

        on_interrupt.assert_called_once()
        assert result == "stopped"

    def test_interrupt_retries_until_accepted(self) -> None:
        """A stop refused before the job is running is retried on later frames."""
        import progress

        release = threading.Event()
        answers = iter([False, False, True])

        def stop() -> bool:
            accepted = next(answers)
            if accepted:
                release.set()
            return accepted

        on_interrupt = MagicMock(side_effect=stop)

        def task() -> str:
            release.wait(5)
            return "stopped"

        with patch.object(progress, "threading", _fake_threading(1)):
            result = progress.run_with_progress(task, on_interrupt=on_interrupt)

        assert result == "stopped"
        assert on_interrupt.call_count == 3

    def test_interrupt_without_handler_propagates(self) -> None:
        """Without on_interrupt, Ctrl+C is re-raised."""
        import progress

        gate = threading.Event()
        with patch.object(progress, "threading", _fake_threading(1)):
            with pytest.raises(KeyboardInterrupt):
                progress.run_with_progress(lambda: gate.wait(0.2))

    def test_second_interrupt_propagates(self) -> None:
        """A second Ctrl+C while stopping is re-raised."""
        import progress

        gate = threading.Event()
        on_interrupt = MagicMock()
        with patch.object(progress, "threading", _fake_threading(2)):
            with pytest.raises(KeyboardInterrupt):
                progress.run_with_progress(lambda: gate.wait(0.2), on_interrupt=on_interrupt)
        on_interrupt.assert_called_once()


class TestMakeReportHandler:
    """Test job report → progress message formatting."""

    def test_start_message(self) -> None:
        from progress import make_report_handler

        messages: list[str] = []
        handle = make_report_handler(messages.append)
        handle(MagicMock(kind="start", tiles_total=9))
        assert messages == ["Preparing 9 tiles"]

    def test_tile_progress_bar(self) -> None:
        from progress import make_report_handler

        messages: list[str] = []
        handle = make_report_handler(messages.append, bar_len=10)
        handle(MagicMock(kind="tile-completed", tiles_completed=5, tiles_total=10))
        assert messages[0].startswith("Tiles [█████░░░░░] 5/10 | ")
        assert "left" in messages[0]

    def test_first_tile_has_no_estimate(self) -> None:
        from progress import make_report_handler

        messages: list[str] = []
        handle = make_report_handler(messages.append, bar_len=4)
        handle(MagicMock(kind="tile-started", tiles_completed=0, tiles_total=3))
        assert messages == ["Tiles [░░░░] 0/3"]

    def test_terminal_reports(self) -> None:
        from progress import make_report_handler

        messages: list[str] = []
        handle = make_report_handler(messages.append)
        handle(MagicMock(kind="paused"))
        handle(MagicMock(kind="aborted", tiles_completed=2))
        handle(MagicMock(kind="errored", error=RuntimeError("oom")))
        handle(MagicMock(kind="completed"))
        assert messages[:3] == ["Paused", "Stopped after 2 tiles", "Failed: oom"]
        assert messages[3].startswith("Done in ")

    def test_unknown_report_ignored(self) -> None:
        from progress import make_report_handler

        messages: list[str] = []
        make_report_handler(messages.append)(object())
        assert messages == []


class TestFormatClock:
    """Test the mm:ss formatter."""

    def test_values(self) -> None:
        from progress import _format_clock

        assert _format_clock(0) == "00:00"
        assert _format_clock(75.9) == "01:15"
        assert _format_clock(-3) == "00:00"


class TestBuildBar:
    """Test the bouncing bar builder."""

    def test_bar_has_correct_width(self) -> None:
        """Bar always has 32 visible characters (ignoring ANSI codes)."""
        from progress import _build_bar, _BAR_WIDTH

        with patch.dict(os.environ, {"NO_COLOR": "1"}):
            for step in range(100):
                bar = _build_bar(step)
                assert len(bar) == _BAR_WIDTH

    def test_no_color_mode(self) -> None:
        """NO_COLOR env var produces plain-text bar."""
        from progress import _build_bar

        with patch.dict(os.environ, {"NO_COLOR": "1"}):
            bar = _build_bar(0)
            assert "\033[" not in bar


class TestTruncate:
    """Test the string truncation helper."""

    def test_short_string_unchanged(self) -> None:
        from progress import _truncate

        assert _truncate("hello", max_len=10) == "hello"

    def test_long_string_truncated(self) -> None:
        from progress import _truncate

        result = _truncate("a" * 100, max_len=10)
        assert len(result) == 10
        assert result.endswith("…")
