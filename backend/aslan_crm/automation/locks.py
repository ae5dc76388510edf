"""
Per-order mutual exclusion for stage evaluation.

On PostgreSQL the lock is pg_try_advisory_xact_lock, held until the
owning transaction commits or rolls back. Other dialects (SQLite in tests
and local runs) get an in-process lease keyed by order id, released right
after the transaction ends. In both cases acquisition never blocks: a busy
order simply reports `acquired = False`.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.logging import automation_logger

# Orders currently being evaluated in this process (non-PostgreSQL only)
_local_leases: set[int] = set()


class OrderLock:
    """
    Async context manager owning the session's transaction for one order.

        async with OrderLock(db, order_id) as lock:
            if not lock.acquired:
                return ...
            ...  # committed on exit, rolled back on error
    """

    def __init__(self, db: AsyncSession, order_id: int):
        self.db = db
        self.order_id = order_id
        self.acquired = False
        self._local = False

    @property
    def dialect(self) -> str:
        return self.db.get_bind().dialect.name

    async def __aenter__(self) -> "OrderLock":
        if self.dialect == "postgresql":
            result = await self.db.execute(
                text("SELECT pg_try_advisory_xact_lock(:order_id)"),
                {"order_id": self.order_id},
            )
            self.acquired = bool(result.scalar())
        elif self.order_id not in _local_leases:
            _local_leases.add(self.order_id)
            self._local = True
            self.acquired = True

        if self.acquired:
            automation_logger.debug("Order lock acquired", order_id=self.order_id)
        else:
            automation_logger.info("Order lock busy", order_id=self.order_id)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self.db.commit()
            else:
                await self.db.rollback()
        finally:
            if self._local:
                _local_leases.discard(self.order_id)
                self._local = False
