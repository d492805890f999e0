# services/unit_of_work.py
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

import config
from .errors import ConcurrentModification, TransactionAborted

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, db: AsyncIOMotorDatabase, transactions: Optional[bool] = None):
        self.db = db
        self.transactions = config.MONGODB_TRANSACTIONS if transactions is None else transactions
        self.committed = False
        self._ops: List[Tuple[str, str, tuple]] = []
        self._rollback_hooks: List[Callable[[], Awaitable[Any]]] = []

    async def __aenter__(self) -> "UnitOfWork":
        logger.info("Unit of work started")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            logger.error(f"Unit of work failed with {exc_type.__name__}: {exc}")
            await self.rollback()
            return False
        try:
            await self.commit()
        except Exception:
            await self.rollback()
            raise
        return False

    @property
    def pending(self) -> int:
        return len(self._ops)

    def insert(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        # the driver writes _id into the dict it is given
        self._ops.append(("insert_one", collection, (dict(document),)))
        return document

    def update(self, collection: str, query: Dict[str, Any], update: Dict[str, Any],
               require_match: bool = False):
        """Queue a single-document update.

        With ``require_match`` the commit fails with ConcurrentModification
        when the query no longer matches, e.g. because an array index it
        guards has shifted since the read.
        """
        op = "update_one_matched" if require_match else "update_one"
        self._ops.append((op, collection, (query, update)))

    def update_many(self, collection: str, query: Dict[str, Any], update: Dict[str, Any]):
        self._ops.append(("update_many", collection, (query, update)))

    def delete(self, collection: str, query: Dict[str, Any]):
        self._ops.append(("delete_one", collection, (query,)))

    def delete_many(self, collection: str, query: Dict[str, Any]):
        self._ops.append(("delete_many", collection, (query,)))

    def on_rollback(self, hook: Callable[[], Awaitable[Any]]):
        """Register a compensating action for side effects made outside the database."""
        self._rollback_hooks.append(hook)

    async def _apply(self, session=None):
        kwargs = {"session": session} if session is not None else {}
        for method, collection, args in self._ops:
            if method == "update_one_matched":
                result = await self.db[collection].update_one(*args, **kwargs)
                if result.matched_count == 0:
                    logger.warning(f"Guarded update on {collection} matched nothing: {args[0]}")
                    raise ConcurrentModification("The document changed concurrently, please retry")
                continue
            await getattr(self.db[collection], method)(*args, **kwargs)

    async def commit(self):
        if self.committed:
            raise RuntimeError("Unit of work already committed")
        logger.info(f"Committing {len(self._ops)} queued writes (transactions={self.transactions})")
        try:
            if self.transactions:
                async with await self.db.client.start_session() as session:
                    async with session.start_transaction():
                        await self._apply(session)
            else:
                await self._apply()
        except PyMongoError as e:
            logger.error(f"Transaction aborted: {e}")
            raise TransactionAborted(f"Transaction aborted: {e}") from e
        self.committed = True
        self._ops = []
        self._rollback_hooks = []
        logger.info("Transaction committed successfully")

    async def rollback(self):
        logger.info(f"Discarding {len(self._ops)} queued writes")
        self._ops = []
        hooks, self._rollback_hooks = self._rollback_hooks, []
        for hook in hooks:
            try:
                await hook()
            except Exception as e:
                logger.error(f"Rollback hook failed: {e}")
