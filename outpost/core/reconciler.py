"""Background reconciliation of instance records against the provider."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from outpost.constants import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

PollFunction = Callable[[str], Awaitable[bool]]
"""Coroutine function polled with an instance id; returns True when done."""


class ReconciliationScheduler:
    """Own one cancellable polling task per instance id.

    Each task sleeps ``poll_interval`` seconds, then awaits the poll function.
    It ends when the poll function returns True, or after ``max_attempts``
    polls. An exception raised by the poll function is logged and the next
    attempt proceeds as usual.

    Parameters
    ----------
    poll_interval : float
        Seconds to wait before every attempt
    max_attempts : int
        Number of attempts before giving up
    """

    def __init__(
        self,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> None:
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def schedule(self, instance_id: str, poll: PollFunction) -> asyncio.Task[None]:
        """Start polling an instance, replacing any task already running for it.

        Must be called from a running event loop.
        """
        self.cancel(instance_id)

        task = asyncio.create_task(
            self._run(instance_id, poll), name=f"reconcile-{instance_id}"
        )
        self._tasks[instance_id] = task
        task.add_done_callback(lambda t: self._forget(instance_id, t))

        logger.debug(
            "Scheduled reconciliation for %s (every %ss, %d attempts)",
            instance_id,
            self.poll_interval,
            self.max_attempts,
        )
        return task

    def _forget(self, instance_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(instance_id) is task:
            del self._tasks[instance_id]

    def is_scheduled(self, instance_id: str) -> bool:
        return instance_id in self._tasks

    def cancel(self, instance_id: str) -> bool:
        """Cancel the task for an instance.

        Returns
        -------
        bool
            True if a running task was cancelled
        """
        task = self._tasks.pop(instance_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("Cancelled reconciliation for %s", instance_id)
        return True

    async def wait(self, instance_id: str) -> None:
        """Wait until the task for an instance finishes or is cancelled."""
        task = self._tasks.get(instance_id)
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def shutdown(self) -> None:
        """Cancel every task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()

        for task in tasks:
            task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Cancelled %d reconciliation task(s)", len(tasks))

    async def _run(self, instance_id: str, poll: PollFunction) -> None:
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.poll_interval)

            try:
                done = await poll(instance_id)
            except Exception as e:
                logger.warning(
                    "Polling error for instance %s (attempt %d/%d): %s",
                    instance_id,
                    attempt,
                    self.max_attempts,
                    e,
                )
                continue

            if done:
                logger.debug(
                    "Reconciliation for %s finished after %d attempt(s)", instance_id, attempt
                )
                return

        logger.warning(
            "Polling timed out for instance %s after %d attempts; "
            "keeping last observed status",
            instance_id,
            self.max_attempts,
        )
