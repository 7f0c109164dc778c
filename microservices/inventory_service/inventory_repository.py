"""
Inventory Repository

PostgreSQL stock store (asyncpg).
Schema: inventory.stock_records, inventory.status_history

status_history is keyed by tracking id and is append-only: rules turn
UPDATE and DELETE into no-ops, and deleting a stock record leaves its
history in place.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from core.postgres_client import PostgresClient

from .models import ProductStatus, StatusTransition, StockRecord
from .protocols import (
    DuplicateTrackingIdError,
    ProductAlreadyExistsError,
    ProductNotFoundError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS inventory;

CREATE TABLE IF NOT EXISTS inventory.stock_records (
    product_id   TEXT PRIMARY KEY,
    tracking_id  TEXT NOT NULL,
    owner_id     TEXT,
    quantity     INTEGER NOT NULL CHECK (quantity >= 0),
    status       TEXT NOT NULL,
    created_at   TIMESTAMPTZ NOT NULL,
    updated_at   TIMESTAMPTZ NOT NULL,
    CONSTRAINT stock_records_tracking_id_key UNIQUE (tracking_id)
);

CREATE TABLE IF NOT EXISTS inventory.status_history (
    tracking_id    TEXT NOT NULL,
    seq            INTEGER NOT NULL,
    product_id     TEXT NOT NULL,
    status         TEXT NOT NULL,
    changed_at     TIMESTAMPTZ NOT NULL,
    actor_id       TEXT NOT NULL,
    note           TEXT,
    previous_hash  TEXT NOT NULL,
    entry_hash     TEXT NOT NULL,
    PRIMARY KEY (tracking_id, seq)
);

CREATE TABLE IF NOT EXISTS inventory.committed_tokens (
    token_id      TEXT PRIMARY KEY,
    product_id    TEXT NOT NULL,
    committed_at  TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_status_history_product ON inventory.status_history (product_id);

CREATE OR REPLACE RULE status_history_no_update AS
    ON UPDATE TO inventory.status_history DO INSTEAD NOTHING;
CREATE OR REPLACE RULE status_history_no_delete AS
    ON DELETE TO inventory.status_history DO INSTEAD NOTHING;
"""

CONNECTION_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    ConnectionError,
    OSError,
)


class InventoryRepository:
    """
    Repository for stock data operations.

    Tables:
        - inventory.stock_records: quantity/status per product
        - inventory.status_history: hash-chained transitions per tracking id
        - inventory.committed_tokens: reservation tokens whose decrement is stored
    """

    def __init__(self, db: PostgresClient):
        self.db = db
        self.schema = "inventory"
        self.stock_table = "stock_records"
        self.history_table = "status_history"
        self.tokens_table = "committed_tokens"

    @asynccontextmanager
    async def _translate_errors(self, operation: str):
        try:
            yield
        except CONNECTION_ERRORS as e:
            logger.error(f"PostgreSQL unavailable during {operation}: {e}")
            raise StoreUnavailableError(f"Database unavailable during {operation}") from e

    async def initialize(self) -> None:
        async with self._translate_errors("initialize"):
            await self.db.connect()
            await self.db.execute(SCHEMA_SQL)
        logger.info("InventoryRepository schema ready")

    async def close(self) -> None:
        await self.db.close()

    async def health_check(self) -> bool:
        result = await self.db.health_check()
        return bool(result and result.get("healthy"))

    async def create_stock(self, record: StockRecord) -> None:
        async with self._translate_errors("create_stock"):
            try:
                async with self.db.transaction() as conn:
                    await conn.execute(
                        f'''
                        INSERT INTO "{self.schema}".{self.stock_table}
                            (product_id, tracking_id, owner_id, quantity, status, created_at, updated_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7)
                        ''',
                        record.product_id,
                        record.tracking_id,
                        record.owner_id,
                        record.quantity,
                        record.status.value,
                        record.created_at,
                        record.updated_at,
                    )
                    await self._append_history(conn, record.tracking_id, record.product_id, record.status_history)
            except asyncpg.UniqueViolationError as e:
                if e.constraint_name == "stock_records_pkey":
                    raise ProductAlreadyExistsError(record.product_id) from e
                raise DuplicateTrackingIdError(record.tracking_id) from e

    async def _append_history(
        self,
        conn: asyncpg.Connection,
        tracking_id: str,
        product_id: str,
        transitions: List[StatusTransition],
    ) -> None:
        if not transitions:
            return
        next_seq = await conn.fetchval(
            f'SELECT COALESCE(MAX(seq), -1) + 1 FROM "{self.schema}".{self.history_table} WHERE tracking_id = $1',
            tracking_id,
        )
        await conn.executemany(
            f'''
            INSERT INTO "{self.schema}".{self.history_table}
                (tracking_id, seq, product_id, status, changed_at, actor_id, note, previous_hash, entry_hash)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ''',
            [
                (
                    tracking_id,
                    next_seq + index,
                    product_id,
                    t.status.value,
                    t.timestamp,
                    t.actor_id,
                    t.note,
                    t.previous_hash,
                    t.entry_hash,
                )
                for index, t in enumerate(transitions)
            ],
        )

    async def _load_history(self, tracking_id: str) -> List[StatusTransition]:
        rows = await self.db.query(
            f'''
            SELECT status, changed_at, actor_id, note, previous_hash, entry_hash
            FROM "{self.schema}".{self.history_table}
            WHERE tracking_id = $1
            ORDER BY seq ASC
            ''',
            [tracking_id],
        )
        return [self._to_transition(row) for row in rows]

    async def get_stock(self, product_id: str) -> Optional[StockRecord]:
        async with self._translate_errors("get_stock"):
            row = await self.db.query_row(
                f'SELECT * FROM "{self.schema}".{self.stock_table} WHERE product_id = $1',
                [product_id],
            )
            if row is None:
                return None
            return self._to_record(row, await self._load_history(row["tracking_id"]))

    async def get_stock_many(self, product_ids: List[str]) -> Dict[str, StockRecord]:
        if not product_ids:
            return {}
        async with self._translate_errors("get_stock_many"):
            rows = await self.db.query(
                f'SELECT * FROM "{self.schema}".{self.stock_table} WHERE product_id = ANY($1::text[])',
                [list(product_ids)],
            )
            if not rows:
                return {}
            history_rows = await self.db.query(
                f'''
                SELECT tracking_id, status, changed_at, actor_id, note, previous_hash, entry_hash
                FROM "{self.schema}".{self.history_table}
                WHERE tracking_id = ANY($1::text[])
                ORDER BY tracking_id, seq ASC
                ''',
                [[row["tracking_id"] for row in rows]],
            )
        histories: Dict[str, List[StatusTransition]] = {}
        for h in history_rows:
            histories.setdefault(h["tracking_id"], []).append(self._to_transition(h))
        return {
            row["product_id"]: self._to_record(row, histories.get(row["tracking_id"], []))
            for row in rows
        }

    async def get_stock_by_tracking_id(self, tracking_id: str) -> Optional[StockRecord]:
        async with self._translate_errors("get_stock_by_tracking_id"):
            row = await self.db.query_row(
                f'SELECT * FROM "{self.schema}".{self.stock_table} WHERE tracking_id = $1',
                [tracking_id],
            )
            if row is None:
                return None
            return self._to_record(row, await self._load_history(tracking_id))

    async def tracking_id_exists(self, tracking_id: str) -> bool:
        # Ids of removed products stay reserved through their history rows
        async with self._translate_errors("tracking_id_exists"):
            row = await self.db.query_row(
                f'''
                SELECT EXISTS (SELECT 1 FROM "{self.schema}".{self.stock_table} WHERE tracking_id = $1)
                    OR EXISTS (SELECT 1 FROM "{self.schema}".{self.history_table} WHERE tracking_id = $1)
                    AS taken
                ''',
                [tracking_id],
            )
        return bool(row and row["taken"])

    async def save_stock(
        self,
        product_id: str,
        quantity: int,
        status: ProductStatus,
        updated_at: datetime,
        new_transitions: Optional[List[StatusTransition]] = None,
        token_id: Optional[str] = None,
    ) -> bool:
        async with self._translate_errors("save_stock"):
            async with self.db.transaction() as conn:
                if token_id is not None:
                    recorded = await conn.fetchval(
                        f'''
                        INSERT INTO "{self.schema}".{self.tokens_table} (token_id, product_id, committed_at)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (token_id) DO NOTHING
                        RETURNING token_id
                        ''',
                        token_id,
                        product_id,
                        updated_at,
                    )
                    if recorded is None:
                        logger.info(f"Token {token_id} already applied to {product_id}; skipping write")
                        return False
                tracking_id = await conn.fetchval(
                    f'''
                    UPDATE "{self.schema}".{self.stock_table}
                    SET quantity = $2, status = $3, updated_at = $4
                    WHERE product_id = $1
                    RETURNING tracking_id
                    ''',
                    product_id,
                    quantity,
                    status.value,
                    updated_at,
                )
                if tracking_id is None:
                    raise ProductNotFoundError(product_id)
                await self._append_history(conn, tracking_id, product_id, new_transitions or [])
        return True

    async def token_applied(self, token_id: str) -> bool:
        async with self._translate_errors("token_applied"):
            row = await self.db.query_row(
                f'SELECT 1 AS applied FROM "{self.schema}".{self.tokens_table} WHERE token_id = $1',
                [token_id],
            )
        return row is not None

    async def delete_stock(self, product_id: str) -> bool:
        async with self._translate_errors("delete_stock"):
            result = await self.db.execute(
                f'DELETE FROM "{self.schema}".{self.stock_table} WHERE product_id = $1',
                [product_id],
            )
        return result.endswith(" 1")

    def _to_transition(self, row: Dict[str, Any]) -> StatusTransition:
        return StatusTransition(
            status=ProductStatus(row["status"]),
            timestamp=row["changed_at"],
            actor_id=row["actor_id"],
            note=row.get("note"),
            previous_hash=row["previous_hash"],
            entry_hash=row["entry_hash"],
        )

    def _to_record(self, row: Dict[str, Any], history: List[StatusTransition]) -> StockRecord:
        return StockRecord(
            product_id=row["product_id"],
            tracking_id=row["tracking_id"],
            owner_id=row.get("owner_id"),
            quantity=row["quantity"],
            status=ProductStatus(row["status"]),
            status_history=history,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
