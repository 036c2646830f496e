from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from core.trading.lock import LockGuard
from core.trading.models import TradeExecution, TradeRecord, TradeRequest


class SequentialTradeExecutor:
    """Executes trade requests strictly one after another.

    Each trade changes balances that later sizing depends on, so requests
    of one user never overlap. Locks are keyed by the guard's user, so runs
    for different users proceed concurrently. The guard is checked before
    and after every trade.
    """

    def __init__(self):
        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._user_locks_lock = asyncio.Lock()

    async def _lock_for(self, user_id: str) -> asyncio.Lock:
        async with self._user_locks_lock:
            if user_id not in self._user_locks:
                self._user_locks[user_id] = asyncio.Lock()
            return self._user_locks[user_id]

    async def run(
        self,
        requests: Sequence[TradeRequest],
        execute: Callable[[TradeRequest], Awaitable[Optional[TradeRecord]]],
        guard: LockGuard,
    ) -> List[TradeExecution]:
        executions: List[TradeExecution] = []
        lock = await self._lock_for(guard.user_id)
        async with lock:
            for request in requests:
                guard.assert_held()
                trade = await execute(request)
                guard.assert_held()
                executions.append(TradeExecution(request=request, trade=trade))
        return executions
