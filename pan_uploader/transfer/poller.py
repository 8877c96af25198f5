"""
Completion Poller

After the finish call reports an asynchronous merge, ask the server
whether it is done, at most `max_times` times, `interval` seconds apart.
Worst-case wait is therefore bounded: interval * (max_times - 1) of
sleeping over exactly max_times status checks.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..api.models import MergeStatus
from ..exceptions import CompletionError, PollTimeoutError

logger = logging.getLogger(__name__)

CheckMerge = Callable[[str], Awaitable[MergeStatus]]
TickCallback = Callable[[int], None]
Sleep = Callable[[float], Awaitable[Any]]


class PollState(str, Enum):
    IDLE = 'idle'
    POLLING = 'polling'
    DONE = 'done'
    TIMEOUT = 'timeout'
    ERROR = 'error'


class CompletionPoller:
    """Bounded polling of the server-side merge."""

    def __init__(self, check: CheckMerge, interval: float = 2.0, max_times: int = 30,
                 on_tick: Optional[TickCallback] = None,
                 sleep: Sleep = asyncio.sleep):
        if max_times < 1:
            raise ValueError(f"max_times must be >= 1, got {max_times}")
        self._check = check
        self.interval = interval
        self.max_times = max_times
        self._on_tick = on_tick
        self._sleep = sleep
        self.state = PollState.IDLE
        self.attempts = 0

    async def run(self, preupload_id: str) -> MergeStatus:
        """
        Poll until the merge is confirmed.

        Raises:
            PollTimeoutError: not confirmed after max_times checks
            CompletionError: a status check failed
        """
        self.state = PollState.POLLING
        self.attempts = 0

        while True:
            self.attempts += 1
            try:
                status = await self._check(preupload_id)
            except CompletionError:
                self.state = PollState.ERROR
                raise
            except Exception as e:
                self.state = PollState.ERROR
                raise CompletionError(f"Failed to check merge status: {e}") from e

            if status.completed:
                self.state = PollState.DONE
                logger.info(f"Merge confirmed after {self.attempts} checks")
                return status

            if self.attempts >= self.max_times:
                self.state = PollState.TIMEOUT
                logger.error(f"Merge not confirmed after {self.attempts} checks")
                raise PollTimeoutError(self.attempts)

            logger.debug(f"Merge pending (check {self.attempts}/{self.max_times})")
            if self._on_tick:
                self._on_tick(self.attempts)
            await self._sleep(self.interval)
