import asyncio
from contextlib import suppress

from personal_cfo.core import settings
from personal_cfo.core.exceptions import APIError, UnauthorizedError
from personal_cfo.domain.statements import COMPLETED, FAILED, is_terminal
from personal_cfo.integration.api_client import APIClient
from personal_cfo.logger import get_logger
from personal_cfo.models import StatementStatus
from personal_cfo.services.cache import QueryCache, QueryKeys
from personal_cfo.services.notifications import Notifier

logger = get_logger(__name__)

# A finished statement changes the listing, its transactions and every aggregate.
REFRESH_ON_FINISH = (("statements",), ("transactions",), ("analytics",))


class StatementPoller:
    """Polls processing status for any number of statements, one task per id."""

    def __init__(
        self,
        api: APIClient,
        cache: QueryCache,
        notifier: Notifier,
        interval: float | None = None,
        max_consecutive_errors: int | None = None,
    ) -> None:
        self.api = api
        self.cache = cache
        self.notifier = notifier
        self.interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval
        if max_consecutive_errors is None:
            max_consecutive_errors = settings.POLL_MAX_ERRORS
        self.max_consecutive_errors = max(1, max_consecutive_errors)
        self._tasks: dict[str, asyncio.Task[StatementStatus | None]] = {}
        self._latest: dict[str, StatementStatus] = {}

    def is_polling(self, statement_id: str) -> bool:
        task = self._tasks.get(statement_id)
        return task is not None and not task.done()

    def polling_ids(self) -> list[str]:
        return [statement_id for statement_id in self._tasks if self.is_polling(statement_id)]

    def latest(self, statement_id: str) -> StatementStatus | None:
        return self._latest.get(statement_id)

    def start(self, statement_id: str) -> asyncio.Task[StatementStatus | None]:
        task = self._tasks.get(statement_id)
        if task is not None and not task.done():
            return task
        logger.info("[POLL] Tracking statement %s every %.1fs.", statement_id, self.interval)
        task = asyncio.create_task(self._poll(statement_id), name=f"statement-poll-{statement_id}")
        self._tasks[statement_id] = task
        return task

    async def stop(self, statement_id: str) -> None:
        task = self._tasks.pop(statement_id, None)
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.info("[POLL] Stopped tracking statement %s.", statement_id)

    async def stop_all(self) -> None:
        for statement_id in list(self._tasks):
            await self.stop(statement_id)

    def cancel_all(self) -> None:
        """Cancel every poll without waiting; for callers outside a coroutine."""
        for task in self._tasks.values():
            task.cancel()

    async def wait(self, statement_id: str) -> StatementStatus | None:
        task = self._tasks.get(statement_id)
        if task is None:
            return self.latest(statement_id)
        return await task

    def _finish(self, statement_id: str, status: StatementStatus) -> None:
        self.cache.invalidate_many(list(REFRESH_ON_FINISH))
        overall = (status.status or "").lower()
        if overall == COMPLETED:
            self.notifier.success("Statement processed successfully")
        elif overall == FAILED:
            self.notifier.error(status.error_message or "Statement processing failed")
        logger.info("[POLL] Statement %s finished with status '%s'.", statement_id, status.status)

    async def _poll(self, statement_id: str) -> StatementStatus | None:
        errors = 0
        try:
            while True:
                try:
                    status = await self.api.get_statement_status(statement_id)
                except UnauthorizedError:
                    logger.warning("[POLL] Session expired while tracking statement %s.", statement_id)
                    return None
                except APIError as exc:
                    errors += 1
                    logger.warning(
                        "[POLL] Status check %d/%d for statement %s failed: %s",
                        errors,
                        self.max_consecutive_errors,
                        statement_id,
                        exc.message,
                    )
                    if errors >= self.max_consecutive_errors:
                        self.notifier.error(f"Lost track of statement processing: {exc.message}")
                        self.cache.invalidate(QueryKeys.statements())
                        return None
                    await asyncio.sleep(self.interval)
                    continue

                errors = 0
                self._latest[statement_id] = status
                self.cache.set(QueryKeys.statement_status(statement_id), status)
                if is_terminal(status):
                    self._finish(statement_id, status)
                    return status
                await asyncio.sleep(self.interval)
        finally:
            if self._tasks.get(statement_id) is asyncio.current_task():
                del self._tasks[statement_id]


class PollerRegistry:
    """Keeps one poller per session so tracking outlives the request that started it."""

    def __init__(self, interval: float | None = None, max_consecutive_errors: int | None = None) -> None:
        self.interval = interval
        self.max_consecutive_errors = max_consecutive_errors
        self._pollers: dict[str, StatementPoller] = {}

    def __len__(self) -> int:
        return len(self._pollers)

    def create(self, api: APIClient, cache: QueryCache, notifier: Notifier) -> StatementPoller:
        return StatementPoller(
            api,
            cache,
            notifier,
            interval=self.interval,
            max_consecutive_errors=self.max_consecutive_errors,
        )

    def get(self, key: str, api: APIClient, cache: QueryCache, notifier: Notifier) -> StatementPoller:
        poller = self._pollers.get(key)
        if poller is None:
            poller = self.create(api, cache, notifier)
            self._pollers[key] = poller
        else:
            # Keep polling with the newest token for this session.
            poller.api = api
        return poller

    def forget(self, key: str) -> None:
        poller = self._pollers.pop(key, None)
        if poller is not None:
            poller.cancel_all()

    async def discard(self, key: str) -> None:
        poller = self._pollers.pop(key, None)
        if poller is not None:
            await poller.stop_all()

    async def stop_all(self) -> None:
        for key in list(self._pollers):
            await self.discard(key)
