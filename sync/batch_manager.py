"""Debounced batching of write actions to the response store."""
import asyncio
import logging
import random
import string
import time
from typing import Callable, Dict, List, Optional

import requests

from history.models import BatchAction, BatchResult
from sync.api_client import ApiError, ResponseStoreClient

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 5.0


def new_action_id(action_type: str) -> str:
    """Unique id such as event_response_1718000000000_k3j9x0a2b."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{action_type}_{int(time.time() * 1000)}_{suffix}"


class BatchManager:
    """
    Collects actions and writes them in one request after a quiet period.

    Every new action restarts the debounce timer. Actions are keyed by their
    own id, so successive changes to the same event are all sent. A failed
    write keeps its actions pending for the next flush.
    """

    def __init__(
        self,
        client: ResponseStoreClient,
        delay: float = DEFAULT_DELAY_SECONDS,
        on_flushed: Optional[Callable[[List[BatchAction]], None]] = None
    ):
        """
        Initialize the batch manager.

        Args:
            client: API client used for PUT /batch
            delay: Debounce window in seconds (default: 5)
            on_flushed: Called with the actions the store acknowledged
        """
        self.client = client
        self.delay = delay
        self.on_flushed = on_flushed
        self._pending: Dict[str, BatchAction] = {}
        self._timer: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self.flush_count = 0
        self.failed_flushes = 0

    @property
    def pending_actions(self) -> List[BatchAction]:
        """Pending actions in the order they were added."""
        return list(self._pending.values())

    @property
    def has_scheduled_flush(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def add_action(self, action: BatchAction) -> None:
        """
        Queue an action and restart the debounce timer.

        Must be called from a running event loop.
        """
        self._pending[action.id] = action
        logger.debug(f"Queued action {action.id} ({len(self._pending)} pending)")
        self._schedule()

    def _schedule(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._flush_after(self.delay))
        self._timer.add_done_callback(self._log_timer_failure)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    @staticmethod
    def _log_timer_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Scheduled batch flush failed: {error}",
                exc_info=(type(error), error, error.__traceback__)
            )

    async def _flush_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # The flush itself must survive a reschedule
        self._timer = None
        await self.flush()

    async def flush(self) -> Optional[BatchResult]:
        """
        Send every pending action, one request per user.

        Only one flush runs at a time; actions added while a request is in
        flight go out with the next flush.

        Returns:
            Combined BatchResult, or None when nothing was pending
        """
        async with self._lock:
            actions = list(self._pending.values())
            if not actions:
                return None

            by_user: Dict[str, List[BatchAction]] = {}
            for action in actions:
                by_user.setdefault(action.user_id, []).append(action)

            processed = 0
            results: List[dict] = []
            errors: List[str] = []
            acknowledged: List[BatchAction] = []

            for user_id, user_actions in by_user.items():
                try:
                    result = await asyncio.to_thread(self.client.put_batch, user_actions, user_id)
                except (requests.RequestException, ApiError) as e:
                    logger.error(
                        f"Batch write of {len(user_actions)} actions for user {user_id} failed, "
                        f"keeping them pending: {e}"
                    )
                    errors.append(str(e))
                    continue

                for action in user_actions:
                    self._pending.pop(action.id, None)
                acknowledged.extend(user_actions)
                processed += result.processed
                results.extend(result.results)

            self.flush_count += 1
            if errors:
                self.failed_flushes += 1

            if acknowledged:
                logger.info(
                    f"Flushed {len(acknowledged)} actions, {len(self._pending)} still pending"
                )
                if self.on_flushed:
                    self.on_flushed(acknowledged)

            return BatchResult(
                success=not errors,
                processed=processed,
                results=results,
                error='; '.join(errors) or None
            )

    async def save_now(self) -> Optional[BatchResult]:
        """Flush immediately, skipping the rest of the debounce window."""
        self._cancel_timer()
        return await self.flush()

    def discard_pending(self) -> int:
        """
        Drop every pending action without sending it.

        Returns:
            Number of actions dropped
        """
        self._cancel_timer()
        dropped = len(self._pending)
        self._pending.clear()
        if dropped:
            logger.warning(f"Discarded {dropped} pending actions")
        return dropped
