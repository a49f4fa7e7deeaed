"""Terminal progress animation for the CLI.

This module provides two capabilities:

1. ``run_with_progress``: a styled two-line terminal animation that
   displays a bouncing highlight bar, a braille spinner, elapsed time,
   and a live operation message while a background task executes.

2. ``make_report_handler``: turns job reports into the one-line tile
   progress message shown under the animation.
"""

from __future__ import annotations

import os
import sys
import threading
import time
from typing import Any, Callable

# ── ANSI color constants ────────────────────────────────────────────
_CYAN = "\033[36m"
_YELLOW = "\033[33m"
_GREEN = "\033[32m"
_RED = "\033[31m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"

# Bar geometry
_BAR_WIDTH = 32
_HIGHLIGHT_WIDTH = 5


def _no_color() -> bool:
    """Respect the NO_COLOR convention (https://no-color.org/)."""
    return bool(os.environ.get("NO_COLOR"))


def _truncate(text: str, max_len: int = 72) -> str:
    """Shorten a string with an ellipsis if it exceeds *max_len*."""
    return text if len(text) <= max_len else text[: max_len - 1] + "…"


def _build_bar(step: int) -> str:
    """Build a flowing highlight bar that bounces across the width.

    The highlight segment (5 chars wide) travels left→right→left
    continuously, giving the user a visual "working" signal.
    """
    cycle = _BAR_WIDTH * 2 - 2
    pos = step % cycle
    if pos >= _BAR_WIDTH:
        pos = cycle - pos

    hl_start = max(0, pos - _HIGHLIGHT_WIDTH // 2)
    hl_end = min(_BAR_WIDTH, pos + _HIGHLIGHT_WIDTH // 2 + 1)
    before = "━" * hl_start
    highlight = "━" * (hl_end - hl_start)
    after = "━" * (_BAR_WIDTH - hl_end)

    if _no_color():
        return before + highlight + after
    return f"{_DIM}{before}{_RESET}{_BOLD}{_YELLOW}{highlight}{_RESET}{_DIM}{after}{_RESET}"


def _format_clock(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def run_with_progress(
    task: Callable[[], Any],
    progress_state: dict[str, str] | None = None,
    on_interrupt: Callable[[], Any] | None = None,
) -> Any:
    """Execute *task* in a background thread while showing a progress animation.

    The animation renders two lines to ``sys.__stderr__``:

    - **Line 1**: braille spinner + bouncing bar + elapsed seconds
    - **Line 2**: current operation message from *progress_state*

    When the task finishes, a green "Completed" line replaces the animation.

    Args:
        task: A zero-argument callable to run in the background.
        progress_state: Mutable dict whose ``"message"`` key is read
            by the animation loop to display the current operation.
        on_interrupt: Called on Ctrl+C; the animation then keeps running
            until *task* returns. While it returns False (the task has
            not started the job yet) it is called again on every frame.
            Without it Ctrl+C propagates.

    Returns:
        Whatever *task* returns.

    Raises:
        Any exception raised by *task* is re-raised after the animation
        is cleaned up.
    """
    done = threading.Event()
    output_holder: dict[str, Any] = {"result": None, "error": None}

    def worker() -> None:
        try:
            output_holder["result"] = task()
        except Exception as error:  # pragma: no cover – passthrough
            output_holder["error"] = error
        finally:
            done.set()

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()

    spinner_frames = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
    idx = 0
    start_time = time.time()
    no_color = _no_color()
    interrupted = False
    stop_pending = False

    def _get_operation() -> str:
        if isinstance(progress_state, dict):
            return progress_state.get("message", "Processing...")
        return "Processing..."

    # ── Animation loop ──────────────────────────────────────────────
    while not done.is_set():
        if stop_pending:
            stop_pending = on_interrupt() is False
        spinner = spinner_frames[idx % len(spinner_frames)]
        elapsed = int(time.time() - start_time)
        bar_str = _build_bar(idx)
        operation = _truncate(_get_operation())
        label = "Stopping" if interrupted else "Upscaling"

        if no_color:
            line1 = f"  {spinner}  {label} {bar_str}  {elapsed:>3}s"
            line2 = f"  ╰─ {operation}"
        else:
            line1 = (
                f"  {_CYAN}{spinner}{_RESET}  {label} {bar_str}"
                f"  {_BOLD}{_YELLOW}{elapsed:>3}s{_RESET}"
            )
            line2 = f"  {_DIM}╰─ {operation}{_RESET}"

        print(
            f"\r\033[2K{line1}\n\033[2K{line2}\033[1A\r",
            end="",
            flush=True,
            file=sys.__stderr__,
        )
        try:
            done.wait(0.08)
        except KeyboardInterrupt:
            if on_interrupt is None or interrupted:
                raise
            interrupted = True
            stop_pending = on_interrupt() is False
        idx += 1

    # ── Final "done" frame ──────────────────────────────────────────
    thread.join()
    total = int(time.time() - start_time)
    final_operation = _truncate(_get_operation())
    done_bar = "━" * _BAR_WIDTH
    failed = output_holder["error"] is not None or interrupted
    word, color = ("Stopped", _RED) if failed else ("Completed", _GREEN)
    mark = "✗" if failed else "✓"

    if no_color:
        final_line1 = f"  {mark}  {word} {done_bar}  {total:>3}s"
        final_line2 = f"  ╰─ {final_operation}"
    else:
        final_line1 = (
            f"  {color}{_BOLD}{mark}{_RESET}  {color}{word}{_RESET} "
            f"{color}{done_bar}{_RESET}  {_BOLD}{color}{total:>3}s{_RESET}"
        )
        final_line2 = f"  {_DIM}╰─ {final_operation}{_RESET}"

    print(
        f"\r\033[2K{final_line1}\n\033[2K{final_line2}",
        file=sys.__stderr__,
    )

    if output_holder["error"] is not None:
        raise output_holder["error"]

    return output_holder["result"]


def make_report_handler(
    set_progress: Callable[[str], None],
    *,
    bar_len: int = 20,
    label: str = "Tiles",
) -> Callable[[Any], None]:
    """Create a job report callback that updates the progress message.

    Tile reports become ``Tiles [████░░░░] 3/9 | 00:02 spent, ~00:04 left``;
    pause, resume and terminal reports get a short status line.
    """
    start: list[float] = [time.monotonic()]

    def handle(report: Any) -> None:
        kind = getattr(report, "kind", "")
        if kind == "start":
            start[0] = time.monotonic()
            set_progress(f"Preparing {report.tiles_total} tiles")
        elif kind in ("tile-started", "tile-completed"):
            done = report.tiles_completed
            total = max(1, report.tiles_total)
            spent = time.monotonic() - start[0]
            filled = int(bar_len * done / total)
            bar = "█" * filled + "░" * (bar_len - filled)
            message = f"{label} [{bar}] {done}/{report.tiles_total}"
            if done > 0:
                remaining = spent / done * (report.tiles_total - done)
                message += f" | {_format_clock(spent)} spent, ~{_format_clock(remaining)} left"
            set_progress(message)
        elif kind == "paused":
            set_progress("Paused")
        elif kind == "aborted":
            set_progress(f"Stopped after {report.tiles_completed} tiles")
        elif kind == "errored":
            set_progress(f"Failed: {report.error}")
        elif kind == "completed":
            set_progress(f"Done in {_format_clock(time.monotonic() - start[0])}")

    return handle
