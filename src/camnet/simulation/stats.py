"""Statistics -- per-tick metrics of a run, written as CSV.

Metrics are accumulated during a tick and committed by ``next_time_step()``
as one row of the summary file.  With ``all_statistics`` each camera also
gets its own file (``<output stem>_<camera>.csv``).  Without an output
path everything stays in memory, which is what the tests use.

Write failures surface as StatisticsIOError; the engine logs and carries on.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Callable

from loguru import logger

from .exceptions import StatisticsIOError

SUMMARY_COLUMNS = [
    "time_step", "visible", "utility", "communication", "handover",
    "overlap", "confidence", "proportion", "reward", "overhead",
]

CAMERA_COLUMNS = [
    "time_step", "utility", "communication", "confidence", "proportion",
    "reward", "overhead", "strategy",
]


def safe_record(record: Callable[..., Any], *args: Any) -> None:
    """Call a statistics method, logging instead of raising on I/O failure."""
    try:
        record(*args)
    except StatisticsIOError as exc:
        logger.warning(f"Statistics write failed: {exc}")


@dataclass
class _CameraRow:
    utility: float = 0.0
    communication: float = 0.0
    confidence: float = 0.0
    proportion: float = 0.0
    reward: float = 0.0
    overhead: float = 0.0
    strategy: int = -1


@dataclass
class _TickRow:
    visible: int = 0
    utility: float = 0.0
    communication: float = 0.0
    handover: float = 0.0
    overlap: float = 0.0
    confidence: float = 0.0
    proportion: float = 0.0
    reward: float = 0.0
    overhead: float = 0.0
    cameras: dict[str, _CameraRow] = field(default_factory=dict)


class Statistics:
    """Collector for one simulation run."""

    def __init__(self, output: str | Path | None = None, all_statistics: bool = False) -> None:
        self._output = Path(output) if output is not None else None
        self._all_statistics = all_statistics
        self._time_step = 0
        self._row = _TickRow()
        self._totals = _TickRow()
        self._history: list[dict[str, float]] = []
        self._strategies: dict[str, int] = {}
        self._files: dict[str, tuple[IO[str], Any]] = {}
        self._closed = False

        if self._output is not None:
            self._open("", self._output, SUMMARY_COLUMNS)

    # -- files ---------------------------------------------------------------

    def _open(self, key: str, path: Path, columns: list[str]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = path.open("w", newline="", encoding="utf-8")
            writer = csv.writer(fh)
            writer.writerow(columns)
        except OSError as exc:
            raise StatisticsIOError(f"cannot open statistics file {path}: {exc}") from exc
        self._files[key] = (fh, writer)

    def _write(self, key: str, row: list[Any]) -> None:
        fh, writer = self._files[key]
        try:
            writer.writerow(row)
        except OSError as exc:
            raise StatisticsIOError(f"cannot write statistics row: {exc}") from exc

    def _camera_path(self, name: str) -> Path:
        return self._output.with_name(f"{self._output.stem}_{name}{self._output.suffix or '.csv'}")

    # -- recording -------------------------------------------------------------

    @property
    def time_step(self) -> int:
        return self._time_step

    @property
    def history(self) -> list[dict[str, float]]:
        """Committed summary rows, oldest first."""
        return list(self._history)

    def _cam(self, name: str) -> _CameraRow:
        return self._row.cameras.setdefault(name, _CameraRow())

    def add_visible(self) -> None:
        self._row.visible = 1

    def add_utility(self, value: float, name: str) -> None:
        self._row.utility += value
        self._cam(name).utility += value

    def add_communication(self, value: float, name: str) -> None:
        self._row.communication += value
        self._cam(name).communication += value

    def add_handover(self, value: float) -> None:
        self._row.handover += value

    def add_overlap(self, value: float, name: str = "") -> None:
        self._row.overlap += value

    def add_confidence(self, value: float, name: str) -> None:
        self._row.confidence += value
        self._cam(name).confidence += value

    def add_proportion(self, value: float, name: str) -> None:
        self._row.proportion += value
        self._cam(name).proportion += value

    def set_reward(self, utility: float, overhead: float, name: str) -> None:
        self._cam(name).reward = utility - overhead
        self._row.reward += utility - overhead

    def set_strat(self, strategy: int, name: str) -> None:
        self._strategies[name] = strategy

    def set_communication_overhead(self, value: float, name: str) -> None:
        self._row.overhead += value
        self._cam(name).overhead = value

    def next_time_step(self) -> None:
        """Commit the current row and start the next tick."""
        row = self._row
        values = [
            self._time_step, row.visible, row.utility, row.communication,
            row.handover, row.overlap, row.confidence, row.proportion,
            row.reward, row.overhead,
        ]
        self._history.append(dict(zip(SUMMARY_COLUMNS, values)))
        for name in SUMMARY_COLUMNS[1:]:
            setattr(self._totals, name, getattr(self._totals, name) + getattr(row, name))

        self._time_step += 1
        self._row = _TickRow()

        if "" in self._files:
            self._write("", values)
        if self._all_statistics and self._output is not None:
            for name, cam in row.cameras.items():
                if name not in self._files:
                    self._open(name, self._camera_path(name), CAMERA_COLUMNS)
                self._write(name, [
                    values[0], cam.utility, cam.communication, cam.confidence,
                    cam.proportion, cam.reward, cam.overhead,
                    self._strategies.get(name, cam.strategy),
                ])

    # -- summary ---------------------------------------------------------------

    def get_summary_desc(self, spaces: bool = False) -> str:
        sep = ", " if spaces else ","
        return sep.join(["time_steps"] + SUMMARY_COLUMNS[1:])

    def get_summary(self, spaces: bool = False) -> str:
        sep = ", " if spaces else ","
        totals = [self._time_step] + [getattr(self._totals, n) for n in SUMMARY_COLUMNS[1:]]
        return sep.join(f"{v:g}" if isinstance(v, float) else str(v) for v in totals)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for key, (fh, _writer) in self._files.items():
            try:
                fh.close()
            except OSError as exc:
                raise StatisticsIOError(f"cannot close statistics file '{key}': {exc}") from exc
        self._files = {}
