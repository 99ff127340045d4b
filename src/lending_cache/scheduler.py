"""Drives refreshers on independent fixed-interval timers.

Lifecycle is ``uninitialized -> initializing -> running``. :meth:`Scheduler.initialize`
registers one timer task per job, then runs every refresher once as a warm-up
pass. Timers are independent: a slow run of one job never delays another.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from lending_cache.cache.keys import CLEARABLE_PATTERNS
from lending_cache.cache.store import CacheStore
from lending_cache.config import JobConfig
from lending_cache.errors import SchedulerError
from lending_cache.refreshers import REFRESHER_FACTORIES, RefreshOutcome, Refresher
from lending_cache.upstream.client import UpstreamClient

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RUNNING = "running"


@dataclass
class RefreshJob:
    """One dataset's schedule plus the bookkeeping of its last run."""

    name: str
    interval_seconds: float
    ttl_seconds: float
    refresher: Refresher
    last_run_at: datetime | None = None
    last_status: Literal["success", "failure"] | None = None
    last_error: str | None = None

    def record(self, outcome: RefreshOutcome) -> None:
        self.last_run_at = datetime.now(timezone.utc)
        self.last_status = "success" if outcome.ok else "failure"
        self.last_error = outcome.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "ttl_seconds": self.ttl_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_status": self.last_status,
            "last_error": self.last_error,
        }


@dataclass
class BestEffortResult:
    successes: list[RefreshOutcome] = field(default_factory=list)
    failures: list[RefreshOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)


async def run_all_best_effort(runs: Mapping[str, Awaitable[RefreshOutcome]]) -> BestEffortResult:
    """Await every run concurrently and sort the outcomes.

    An exception from one run is recorded as that run's failure; it never
    cancels the others.
    """
    names = list(runs)
    results = await asyncio.gather(*runs.values(), return_exceptions=True)
    outcome = BestEffortResult()
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            outcome.failures.append(RefreshOutcome(name, ok=False, error=f"{type(result).__name__}: {result}"))
        elif result.ok:
            outcome.successes.append(result)
        else:
            outcome.failures.append(result)
    return outcome


class Scheduler:
    """Own the refresh jobs, their timers and the manual refresh/clear operations."""

    def __init__(
        self,
        store: CacheStore,
        jobs: Iterable[RefreshJob],
        *,
        clear_patterns: Iterable[str] = CLEARABLE_PATTERNS,
    ) -> None:
        self._store = store
        self._jobs: dict[str, RefreshJob] = {}
        for job in jobs:
            if job.name in self._jobs:
                raise ValueError(f"duplicate refresh job: {job.name}")
            self._jobs[job.name] = job
        self._clear_patterns = tuple(clear_patterns)
        self._state = SchedulerState.UNINITIALIZED
        self._timers: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def timer_count(self) -> int:
        return len(self._timers)

    @property
    def jobs(self) -> list[RefreshJob]:
        return list(self._jobs.values())

    async def initialize(self) -> BestEffortResult | None:
        """Register timers and warm the cache; a no-op after the first call.

        Raises :class:`SchedulerError` if the timers cannot be registered.
        Warm-up failures are logged and do not stop the scheduler from running.
        """
        if self._state is not SchedulerState.UNINITIALIZED:
            logger.warning("Scheduler already initialized (state=%s)", self._state.value)
            return None
        self._state = SchedulerState.INITIALIZING
        logger.info("Initializing background data refresh scheduler with %d jobs", len(self._jobs))

        try:
            self._register_timers()
        except Exception as exc:
            self._cancel_timers()
            self._state = SchedulerState.UNINITIALIZED
            raise SchedulerError(f"failed to register refresh timers: {exc}") from exc

        logger.info("Warming up cache with initial data...")
        warmup = await self._run_all()
        logger.info("Cache warmup completed: %d successful, %d failed", len(warmup.successes), len(warmup.failures))

        self._state = SchedulerState.RUNNING
        logger.info("Background scheduler initialized successfully")
        return warmup

    async def refresh_all(self) -> dict[str, Any]:
        """Run every refresher once, outside the timer grid."""
        logger.info("Manual refresh of all cached data triggered")
        result = await self._run_all()
        logger.info("Manual refresh completed: %d successful, %d failed", len(result.successes), len(result.failures))
        return {
            "successful": len(result.successes),
            "failed": len(result.failures),
            "total": result.total,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def clear_cache(self) -> int:
        """Invalidate every known namespace and return the number of keys removed."""
        logger.info("Clearing all cached data...")
        total = 0
        for pattern in self._clear_patterns:
            total += await self._store.clear_by_prefix(pattern)
        logger.info("Cache cleared: %d keys removed", total)
        return total

    def job_statuses(self) -> list[dict[str, Any]]:
        return [job.to_dict() for job in self._jobs.values()]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _register_timers(self) -> None:
        if not self._jobs:
            raise SchedulerError("no refresh jobs registered")
        for job in self._jobs.values():
            if job.interval_seconds <= 0:
                raise SchedulerError(f"job {job.name} has non-positive interval {job.interval_seconds}")
            self._timers[job.name] = asyncio.create_task(self._timer_loop(job), name=f"refresh:{job.name}")
            logger.debug("Registered timer for %s every %ss", job.name, job.interval_seconds)

    def _cancel_timers(self) -> None:
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    async def _timer_loop(self, job: RefreshJob) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + job.interval_seconds
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            try:
                await self._run_job(job)
            except Exception as exc:
                # Keep the timer alive; the next tick retries.
                logger.exception("Refresh %s crashed", job.name)
                job.record(RefreshOutcome(job.name, ok=False, error=f"{type(exc).__name__}: {exc}"))
            next_tick += job.interval_seconds
            now = loop.time()
            if next_tick < now:
                # The run overran one or more ticks; skip them instead of bursting.
                missed = int((now - next_tick) // job.interval_seconds) + 1
                logger.warning("Refresh %s overran its interval, skipping %d tick(s)", job.name, missed)
                next_tick += missed * job.interval_seconds

    async def _run_job(self, job: RefreshJob) -> RefreshOutcome:
        outcome = await job.refresher.run(self._store, job.ttl_seconds)
        job.record(outcome)
        return outcome

    async def _run_all(self) -> BestEffortResult:
        return await run_all_best_effort({job.name: self._run_job(job) for job in self._jobs.values()})


def build_jobs(client: UpstreamClient, job_configs: Mapping[str, JobConfig]) -> list[RefreshJob]:
    """Create refresh jobs for every enabled, known dataset in ``job_configs``."""
    jobs: list[RefreshJob] = []
    for name, cfg in job_configs.items():
        if not cfg.enabled:
            continue
        factory = REFRESHER_FACTORIES.get(name)
        if factory is None:
            logger.warning("Unknown refresh job %r in config; skipping", name)
            continue
        jobs.append(
            RefreshJob(
                name=name,
                interval_seconds=cfg.interval_seconds,
                ttl_seconds=cfg.ttl_seconds,
                refresher=factory(client),
            )
        )
    return jobs
