"""Hierarchical stage timer.

Stages are pushed and popped like a call stack; nested stage names are
joined with dots (``run.tile.model``). Every pop records one duration
under the full dotted key, so a stage entered once per tile collects one
entry per tile. ``log_summary`` writes the aggregated breakdown to the
logger at job end.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class TimerEntry:
    duration: float
    extra: Any = None


class StageTimer:
    def __init__(self) -> None:
        self.history: dict[str, list[TimerEntry]] = {}
        self._keys: list[str] = []
        self._starts: list[float] = []
        self._extras: list[Any] = []

    @property
    def depth(self) -> int:
        return len(self._keys)

    def push(self, name: str, extra: Any = None) -> None:
        self._keys.append(name)
        self.history.setdefault(".".join(self._keys), [])
        self._starts.append(time.perf_counter())
        self._extras.append(extra)

    def pop(self, extra: Any = None) -> float:
        """Close the innermost stage and return its duration in milliseconds."""
        if not self._keys:
            raise RuntimeError("pop() without a matching push()")
        now = time.perf_counter()
        key = ".".join(self._keys)
        self._keys.pop()
        duration = (now - self._starts.pop()) * 1000.0
        pushed_extra = self._extras.pop()
        self.history[key].append(TimerEntry(duration, extra if extra is not None else pushed_extra))
        return duration

    def transition(self, name: str, extra: Any = None) -> float:
        """Close the innermost stage and open a sibling."""
        duration = self.pop()
        self.push(name, extra)
        return duration

    def close_all(self) -> None:
        while self._keys:
            self.pop()

    def summary_lines(self) -> list[str]:
        self.close_all()
        lines = []
        for key, entries in self.history.items():
            if not entries:
                continue
            indent = "  " * key.count(".")
            durations = [entry.duration for entry in entries]
            if len(entries) > 1:
                total = sum(durations)
                lines.append(
                    f"{indent}→ {key}: {len(entries)} occurrences; "
                    f"min {min(durations):.2f}ms, max {max(durations):.2f}ms, "
                    f"avg {total / len(entries):.2f}ms, total {total:.2f}ms"
                )
            else:
                lines.append(f"{indent}→ {key}: {durations[0]:.2f}ms")
            for entry in entries:
                if entry.extra is not None:
                    lines.append(f"{indent}  ↑ {entry.duration:.2f}ms → {entry.extra!r}")
        return lines

    def log_summary(self, level: int = logging.INFO) -> None:
        for line in self.summary_lines():
            logger.log(level, line)
