"""
Stock Store Mocks for Component Testing

Wrappers around the in-memory store that add latency or failures to
chosen operations. Latency can sit before the write (it never lands
within the timeout) or after it (it lands but the answer comes late).
"""
import asyncio
from typing import Dict, Optional, Set

from microservices.inventory_service.memory_repository import InMemoryStockRepository


class ControlledStockStore(InMemoryStockRepository):
    """In-memory store whose operations can be slowed down or made to fail"""

    def __init__(self):
        super().__init__()
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: Dict[str, int] = {}
        self.slow_once: Set[str] = set()
        self.late_answers: Dict[str, float] = {}

    def delay(self, operation: str, seconds: float, once: bool = False) -> None:
        self.delays[operation] = seconds
        if once:
            self.slow_once.add(operation)

    def answer_late(self, operation: str, seconds: float) -> None:
        """Apply the operation, then wait before answering"""
        self.late_answers[operation] = seconds

    def fail(self, operation: str, error: Exception) -> None:
        self.failures[operation] = error

    def reset(self) -> None:
        self.delays.clear()
        self.failures.clear()
        self.slow_once.clear()
        self.late_answers.clear()

    async def _before(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if operation in self.failures:
            raise self.failures[operation]
        seconds: Optional[float] = self.delays.get(operation)
        if seconds:
            if operation in self.slow_once:
                self.delays.pop(operation, None)
                self.slow_once.discard(operation)
            await asyncio.sleep(seconds)

    async def _after(self, operation: str) -> None:
        seconds = self.late_answers.get(operation)
        if seconds:
            await asyncio.sleep(seconds)

    async def create_stock(self, record):
        await self._before("create_stock")
        return await super().create_stock(record)

    async def get_stock(self, product_id):
        await self._before("get_stock")
        return await super().get_stock(product_id)

    async def save_stock(self, product_id, quantity, status, updated_at, new_transitions=None, token_id=None):
        await self._before("save_stock")
        result = await super().save_stock(product_id, quantity, status, updated_at, new_transitions, token_id)
        await self._after("save_stock")
        return result

    async def token_applied(self, token_id):
        await self._before("token_applied")
        return await super().token_applied(token_id)

    async def delete_stock(self, product_id):
        await self._before("delete_stock")
        return await super().delete_stock(product_id)

    async def tracking_id_exists(self, tracking_id):
        await self._before("tracking_id_exists")
        return await super().tracking_id_exists(tracking_id)
