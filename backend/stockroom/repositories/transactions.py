from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

from stockroom.core.errors import VersionConflictError
from stockroom.infrastructure.logging import get_logger
from stockroom.infrastructure.persistence_clients import MongoClientManager
from stockroom.store.in_memory import InMemoryStore

T = TypeVar("T")

logger = get_logger(__name__)


class TransactionContext:
    """State shared by every repository call made inside one transaction.

    With Mongo the context carries the driver session. In memory it keeps an
    undo journal that is replayed in reverse when the transaction fails or is
    aborted. ``on_commit`` callbacks run only once the writes are durable.
    """

    def __init__(self, session: Any | None = None) -> None:
        self.session = session
        self.aborted = False
        self._undo: list[Callable[[], None]] = []
        self._after_commit: list[Callable[[], Awaitable[None]]] = []

    def record_undo(self, step: Callable[[], None]) -> None:
        if self.session is None:
            self._undo.append(step)

    def on_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        self._after_commit.append(callback)

    async def abort(self) -> None:
        self.aborted = True
        if self.session is not None and self.session.in_transaction:
            await self.session.abort_transaction()

    def rollback(self) -> None:
        while self._undo:
            step = self._undo.pop()
            step()
        self._after_commit.clear()

    async def run_commit_hooks(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                await callback()
            except Exception as exc:
                logger.warning("transaction.commit_hook_failed", error=str(exc))


class TransactionRunner:
    """Runs a unit of work atomically.

    A ``VersionConflictError`` escaping the work rolls everything back and
    reruns it, up to ``max_retries`` times.
    """

    def __init__(
        self,
        *,
        store: InMemoryStore,
        mongo_manager: MongoClientManager,
        max_retries: int = 3,
    ) -> None:
        self.store = store
        self.mongo_manager = mongo_manager
        self.max_retries = max(0, int(max_retries))

    async def run(self, fn: Callable[[TransactionContext], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                client = self.mongo_manager.client
                if client is not None:
                    return await self._run_mongo(client, fn)
                return await self._run_in_memory(fn)
            except VersionConflictError as exc:
                if attempt >= self.max_retries:
                    raise VersionConflictError(exc.product_id, attempts=attempt + 1) from exc
                logger.warning(
                    "transaction.retry", product_id=exc.product_id, retry_count=attempt
                )
                attempt += 1

    async def _run_mongo(
        self, client: Any, fn: Callable[[TransactionContext], Awaitable[T]]
    ) -> T:
        attempts: list[TransactionContext] = []

        async def callback(session: Any) -> T:
            # The driver re-invokes this on transient errors; start clean each time.
            tx = TransactionContext(session=session)
            attempts.append(tx)
            return await fn(tx)

        async with client.start_session() as session:
            result = await session.with_transaction(callback)

        tx = attempts[-1]
        if not tx.aborted:
            await tx.run_commit_hooks()
        return result

    async def _run_in_memory(self, fn: Callable[[TransactionContext], Awaitable[T]]) -> T:
        tx = TransactionContext()
        async with self.store.lock:
            try:
                result = await fn(tx)
            except BaseException:
                tx.rollback()
                raise
            if tx.aborted:
                tx.rollback()

        if not tx.aborted:
            await tx.run_commit_hooks()
        return result
