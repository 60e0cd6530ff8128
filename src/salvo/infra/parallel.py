"""
Parallel Processing Module for Batch Battle Analysis

Implements:
- Thread or process pools for analyzing many event logs at once
- Per-battle failure scoping: one bad log never aborts the batch
- Progress tracking and result aggregation
- Encounter recording from the coordinating thread

Each battle is reconstructed sequentially inside one worker; battles share
no mutable state with each other.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from collections.abc import Callable
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from salvo.analysis.statistics import BattleStatistics
from salvo.core.config import SalvoConfig, get_config

logger = logging.getLogger(__name__)

# Default to CPU count - 1, minimum 1
DEFAULT_WORKERS = max(1, (os.cpu_count() or 4) - 1)
MAX_WORKERS = os.cpu_count() or 8


@dataclass
class BattleAnalysisTask:
    """A single event log to analyze."""

    path: Path
    task_id: str = ""
    battle_id: str | None = None

    def __post_init__(self):
        if not self.task_id:
            self.task_id = hashlib.md5(str(self.path).encode(), usedforsecurity=False).hexdigest()[
                :12
            ]


@dataclass
class BattleTaskResult:
    """Result of a single battle analysis."""

    task_id: str
    path: str
    success: bool
    duration_seconds: float
    battle_id: str | None = None
    incomplete: bool = False
    error_message: str | None = None
    analysis_data: dict | None = None
    statistics: BattleStatistics | None = None
    recorded: int = 0

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "path": self.path,
            "battle_id": self.battle_id,
            "success": self.success,
            "incomplete": self.incomplete,
            "duration_seconds": round(self.duration_seconds, 3),
            "error_message": self.error_message,
            "recorded": self.recorded,
            "analysis": self.analysis_data,
        }


@dataclass
class BatchAnalysisProgress:
    """Progress tracking for batch analysis."""

    total_tasks: int
    completed_tasks: int = 0
    failed_tasks: int = 0
    current_task: str = ""

    @property
    def progress_percent(self) -> float:
        if self.total_tasks == 0:
            return 100.0
        return round((self.completed_tasks / self.total_tasks) * 100, 1)


@dataclass
class BatchAnalysisResult:
    """Result of batch analysis."""

    total_battles: int
    successful: int
    failed: int
    total_duration_seconds: float
    results: list[BattleTaskResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total_battles == 0:
            return 0.0
        return round((self.successful / self.total_battles) * 100, 1)

    @property
    def failures(self) -> list[BattleTaskResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict:
        return {
            "total_battles": self.total_battles,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "results": [r.to_dict() for r in self.results],
        }


def _analyze_single_battle(task: BattleAnalysisTask, config: SalvoConfig) -> BattleTaskResult:
    """
    Worker function to analyze a single event log.
    May run in a separate process.
    """
    start_time = time.time()

    try:
        # Import here to keep worker start-up cheap under multiprocessing
        from salvo.pipeline.orchestrator import BattleOrchestrator

        orchestrator = BattleOrchestrator(config)
        analysis = orchestrator.analyze_battle(task.path, battle_id=task.battle_id)

        return BattleTaskResult(
            task_id=task.task_id,
            path=str(task.path),
            success=True,
            duration_seconds=time.time() - start_time,
            battle_id=analysis.battle_id,
            incomplete=analysis.battle.incomplete,
            analysis_data=analysis.to_dict(),
            statistics=analysis.statistics,
        )

    except Exception as e:
        logger.error(f"Failed to analyze {task.path}: {e}")
        return BattleTaskResult(
            task_id=task.task_id,
            path=str(task.path),
            success=False,
            duration_seconds=time.time() - start_time,
            error_message=f"{type(e).__name__}: {e}",
        )


class ParallelBattleAnalyzer:
    """
    Parallel battle analyzer.

    Usage:
        analyzer = ParallelBattleAnalyzer(workers=4)
        results = analyzer.analyze_batch([Path("b1.jsonl"), Path("b2.jsonl")])
    """

    def __init__(
        self,
        workers: int | None = None,
        use_processes: bool | None = None,
        config: SalvoConfig | None = None,
        tracker=None,
        progress_callback: Callable[[BatchAnalysisProgress], None] | None = None,
    ):
        """
        Initialize the parallel analyzer.

        Args:
            workers: Number of workers (config value, or CPU count - 1 when 0)
            use_processes: If True, use ProcessPoolExecutor; if False, use ThreadPoolExecutor
            config: Salvo configuration passed to every worker
            tracker: Optional SessionPlayerTracker; encounters are recorded as results arrive
            progress_callback: Optional callback for progress updates
        """
        self.config = config or get_config()
        batch = self.config.batch
        workers = workers if workers is not None else batch.workers
        self.workers = min(workers or DEFAULT_WORKERS, MAX_WORKERS)
        self.use_processes = batch.use_processes if use_processes is None else use_processes
        self.tracker = tracker
        self.progress_callback = progress_callback

        logger.info(f"ParallelBattleAnalyzer initialized with {self.workers} workers")

    def analyze_batch(self, paths: list[Path], timeout_per_battle: int = 300) -> BatchAnalysisResult:
        """
        Analyze multiple event logs in parallel.

        Args:
            paths: Event log files
            timeout_per_battle: Timeout in seconds per battle

        Returns:
            BatchAnalysisResult with one entry per path
        """
        if not paths:
            return BatchAnalysisResult(
                total_battles=0, successful=0, failed=0, total_duration_seconds=0.0
            )

        tasks = [BattleAnalysisTask(path=Path(p)) for p in paths]
        progress = BatchAnalysisProgress(total_tasks=len(tasks))
        start_time = time.time()
        results: list[BattleTaskResult] = []

        ExecutorClass = ProcessPoolExecutor if self.use_processes else ThreadPoolExecutor

        logger.info(f"Starting batch analysis of {len(tasks)} battles with {self.workers} workers")

        with ExecutorClass(max_workers=self.workers) as executor:
            future_to_task = {
                executor.submit(_analyze_single_battle, task, self.config): task for task in tasks
            }

            for future in as_completed(future_to_task, timeout=timeout_per_battle * len(tasks)):
                task = future_to_task[future]
                progress.current_task = str(task.path)

                try:
                    result = future.result(timeout=timeout_per_battle)
                except Exception as e:
                    logger.error(f"Task {task.task_id} failed: {e}")
                    result = BattleTaskResult(
                        task_id=task.task_id,
                        path=str(task.path),
                        success=False,
                        duration_seconds=0.0,
                        error_message=str(e),
                    )

                if result.success and self.tracker is not None and not result.incomplete:
                    try:
                        result.recorded = self.tracker.record_statistics(result.statistics)
                    except Exception as e:
                        logger.error(f"Recording encounters for {task.path} failed: {e}")
                        result.error_message = f"recording failed: {e}"

                results.append(result)
                progress.completed_tasks += 1
                if not result.success:
                    progress.failed_tasks += 1

                if self.progress_callback:
                    self.progress_callback(progress)

        # Deterministic report order regardless of completion order
        results.sort(key=lambda r: r.path)

        total_duration = time.time() - start_time
        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful

        logger.info(
            f"Batch analysis complete: {successful}/{len(results)} successful in {total_duration:.1f}s"
        )

        return BatchAnalysisResult(
            total_battles=len(results),
            successful=successful,
            failed=failed,
            total_duration_seconds=total_duration,
            results=results,
        )

    def analyze_directory(self, directory: Path, recursive: bool = True) -> BatchAnalysisResult:
        """Analyze every event log in a directory matching the watcher pattern."""
        pattern = self.config.watcher.pattern
        paths = sorted(directory.rglob(pattern) if recursive else directory.glob(pattern))
        logger.info(f"Found {len(paths)} event logs in {directory}")
        return self.analyze_batch(paths)


def analyze_battles_parallel(
    paths: list[Path],
    workers: int | None = None,
    config: SalvoConfig | None = None,
) -> BatchAnalysisResult:
    """Convenience function to analyze multiple event logs in parallel."""
    analyzer = ParallelBattleAnalyzer(workers=workers, config=config)
    return analyzer.analyze_batch(paths)
