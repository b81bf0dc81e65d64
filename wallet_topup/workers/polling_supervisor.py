"""
Polling supervisor.

Runs one background inquiry loop per non-terminal wallet transaction:
- the persisted polling flag is claimed before a loop starts
- each tick takes a slot from the shared rate limiter
- the loop stops on a terminal status or at an absolute deadline, and the
  transaction is failed if the deadline wins
"""
import asyncio
import functools
from typing import Dict, List, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    wait_fixed,
)

from wallet_topup.core.models import TransactionStatus
from wallet_topup.core.rate_limiter import RateLimiter
from wallet_topup.core.store import (
    EVENT_STATUS_CHANGED,
    EVENT_TIMED_OUT,
    StoreError,
    TransactionStore,
)
from wallet_topup.integrations.jazzcash_client import (
    GatewayError,
    GatewayResult,
    JazzCashClient,
)
from wallet_topup.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _still_pending(result: GatewayResult) -> bool:
    return not TransactionStatus.from_gateway(result.status).is_terminal


class PollingSupervisor:
    """
    Registry of reconciliation loops keyed by transaction reference.
    """

    def __init__(
        self,
        gateway: JazzCashClient,
        store: TransactionStore,
        rate_limiter: RateLimiter,
        interval_seconds: float = 5.0,
        deadline_seconds: float = 120.0,
    ):
        self.gateway = gateway
        self.store = store
        self.rate_limiter = rate_limiter
        self.interval = interval_seconds
        self.deadline = deadline_seconds
        self.polling_tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_references(self) -> List[str]:
        return list(self.polling_tasks)

    def get_task(self, txn_ref_no: str) -> Optional[asyncio.Task]:
        return self.polling_tasks.get(txn_ref_no)

    async def start(self, txn_ref_no: str) -> bool:
        """
        Start polling ``txn_ref_no`` unless a loop is already active.

        Returns:
            bool: True if a new loop was spawned
        """
        if txn_ref_no in self.polling_tasks:
            logger.debug("polling_already_running", txn_ref_no=txn_ref_no)
            return False

        try:
            claimed = await self.store.claim_polling(txn_ref_no)
        except StoreError as e:
            logger.error("polling_claim_failed", txn_ref_no=txn_ref_no, error=str(e))
            return False

        if not claimed:
            logger.info("polling_already_claimed", txn_ref_no=txn_ref_no)
            return False

        task = asyncio.create_task(self._run(txn_ref_no), name=f"polling:{txn_ref_no}")
        self.polling_tasks[txn_ref_no] = task
        task.add_done_callback(functools.partial(self._on_done, txn_ref_no))
        metrics.set_polling_loops_active(len(self.polling_tasks))

        logger.info(
            "polling_started",
            txn_ref_no=txn_ref_no,
            interval_seconds=self.interval,
            deadline_seconds=self.deadline,
        )
        return True

    def _on_done(self, txn_ref_no: str, task: asyncio.Task) -> None:
        if self.polling_tasks.get(txn_ref_no) is task:
            del self.polling_tasks[txn_ref_no]
        metrics.set_polling_loops_active(len(self.polling_tasks))

        if task.cancelled():
            logger.info("polling_cancelled", txn_ref_no=txn_ref_no)
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "polling_loop_failed",
                txn_ref_no=txn_ref_no,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def _tick(self, txn_ref_no: str) -> GatewayResult:
        async with self.rate_limiter.slot():
            result = await self.gateway.inquiry(txn_ref_no)

        logger.info(
            "polling_tick",
            txn_ref_no=txn_ref_no,
            response_code=result.status_code,
            status=result.status.value,
        )
        return result

    @staticmethod
    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            logger.warning(
                "polling_tick_failed",
                txn_ref_no=retry_state.args[0] if retry_state.args else None,
                attempt=retry_state.attempt_number,
                error=str(outcome.exception()),
            )

    async def _poll_until_terminal(self, txn_ref_no: str) -> GatewayResult:
        await asyncio.sleep(self.interval)

        retrying = AsyncRetrying(
            wait=wait_fixed(self.interval),
            retry=retry_if_exception_type(GatewayError) | retry_if_result(_still_pending),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        return await retrying(self._tick, txn_ref_no)

    async def _run(self, txn_ref_no: str) -> None:
        outcome = "cancelled"
        try:
            try:
                result = await asyncio.wait_for(
                    self._poll_until_terminal(txn_ref_no), timeout=self.deadline
                )
            except asyncio.TimeoutError:
                outcome = "deadline"
                logger.warning("polling_deadline_exceeded", txn_ref_no=txn_ref_no)
                await self.store.update_status(
                    txn_ref_no,
                    TransactionStatus.FAILED,
                    event_type=EVENT_TIMED_OUT,
                    event_data={"reason": "polling_deadline", "deadline_seconds": self.deadline},
                )
                return

            status = TransactionStatus.from_gateway(result.status)
            outcome = status.value
            updated = await self.store.update_status(
                txn_ref_no,
                status,
                event_type=EVENT_STATUS_CHANGED,
                event_data={"to": status.value, "response": dict(result.raw)},
            )
            logger.info(
                "polling_completed",
                txn_ref_no=txn_ref_no,
                status=status.value,
                updated=updated,
            )
        except StoreError:
            outcome = "store_error"
            raise
        finally:
            metrics.record_polling_outcome(outcome)
            try:
                await self.store.clear_polling(txn_ref_no)
            except StoreError as e:
                logger.error("polling_flag_clear_failed", txn_ref_no=txn_ref_no, error=str(e))

    async def wait_idle(self) -> None:
        """Wait until every running loop has finished."""
        while self.polling_tasks:
            await asyncio.gather(*list(self.polling_tasks.values()), return_exceptions=True)
            # let done-callbacks prune the registry
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        """Cancel all running loops."""
        tasks = list(self.polling_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("polling_supervisor_stopped", cancelled=len(tasks))
