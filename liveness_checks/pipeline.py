"""
Check/aggregate/notify pipeline.

``CheckScheduler`` runs one round of checks at a time and puts exactly one
``CheckResult`` per target on the channel. ``FailureAggregator`` drains the
channel and spawns a deduplicated notification task per unhealthy result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

from liveness_checks.checks import CheckResult
from liveness_checks.dedup import NotificationDeduplicator
from liveness_checks.targets import Target


LOGGER = logging.getLogger("liveness-monitor")

CheckFunc = Callable[[Target], Awaitable[CheckResult]]
NotifyFunc = Callable[[CheckResult], Awaitable[bool]]


def new_result_channel(targets: Sequence[Target]) -> asyncio.Queue[CheckResult]:
    return asyncio.Queue(maxsize=max(1, len(targets)))


class CheckScheduler:
    def __init__(
        self,
        targets: Sequence[Target],
        check: CheckFunc,
        channel: asyncio.Queue[CheckResult],
        *,
        interval_seconds: float,
    ) -> None:
        if not targets:
            raise ValueError("CheckScheduler needs at least one target")
        self._targets = list(targets)
        self._check = check
        self._channel = channel
        self._interval_seconds = max(0.0, float(interval_seconds))
        self.rounds_completed = 0

    async def _check_and_publish(self, target: Target) -> CheckResult:
        try:
            result = await self._check(target)
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            LOGGER.exception("Check crashed target=%s error=%s", target.identifier, err)
            result = CheckResult(target=target, healthy=False, error=f"check_crashed: {err}")
        await self._channel.put(result)
        return result

    async def run_round(self) -> list[CheckResult]:
        started = time.perf_counter()
        results = await asyncio.gather(*(self._check_and_publish(t) for t in self._targets))
        self.rounds_completed += 1

        down = [r.target.identifier for r in results if not r.healthy]
        LOGGER.info(
            "Round complete round=%s elapsed_seconds=%s targets=%s down=%s",
            self.rounds_completed,
            round(time.perf_counter() - started, 3),
            len(results),
            down,
        )
        return list(results)

    async def run_forever(self) -> None:
        while True:
            await self.run_round()
            await asyncio.sleep(self._interval_seconds)


class FailureAggregator:
    def __init__(
        self,
        channel: asyncio.Queue[CheckResult],
        deduplicator: NotificationDeduplicator,
        notify: NotifyFunc,
    ) -> None:
        self._channel = channel
        self._deduplicator = deduplicator
        self._notify = notify
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def run_forever(self) -> None:
        while True:
            result = await self._channel.get()
            try:
                if not result.healthy:
                    self._dispatch(result)
            finally:
                self._channel.task_done()

    def _dispatch(self, result: CheckResult) -> None:
        task = asyncio.create_task(self._notify_if_new(result))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _notify_if_new(self, result: CheckResult) -> None:
        target_id = result.target.identifier
        LOGGER.warning("Target down target=%s error=%s", target_id, result.error)

        if not self._deduplicator.should_notify(target_id):
            LOGGER.info("Target stored in cache, skipping notification target=%s", target_id)
            return

        try:
            await self._notify(result)
        except Exception:
            LOGGER.exception("Notification crashed target=%s", target_id)

    async def drain(self) -> None:
        """Wait for in-flight notification tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
