"""Persistence for products, failed records and invalid records.

Supports a PostgreSQL backend and an in-memory backend with the same
semantics (dry runs and tests).
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import AbstractSet, Dict, Iterable, Iterator, List, Optional, Protocol, Set, Tuple

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import DictCursor

from .errors import DuplicateProductError
from .models import FailedRecord, InvalidRecord, ProductRecord

LOGGER = logging.getLogger(__name__)


class Store(Protocol):
    """Storage interface used by the pipeline and the failure ledger."""

    def insert_product(self, product: ProductRecord) -> bool:
        """Insert a product.

        Returns
        -------
        bool
            False when a product with the same natural key already exists

        Raises
        ------
        DuplicateProductError
            Another product already owns ``id_product``
        """
        ...

    def upsert_failed(
        self,
        id_product_smi: str,
        url: str,
        offer_id: int,
        error_message: str,
        id_product: Optional[str] = None,
    ) -> FailedRecord:
        """Create the record with ``retry_count=0`` or bump an existing one by 1."""
        ...

    def insert_invalid(self, record: InvalidRecord) -> None:
        ...

    def get_failed(self, id_product_smi: str) -> Optional[FailedRecord]:
        ...

    def resolve_failed(self) -> int:
        """Set ``resolved`` on unresolved records whose key has a product."""
        ...

    def ignore_failed(self, messages: Iterable[str], max_retry_count: int) -> int:
        """Set ``ignore`` on unrecoverable, exhausted or resolved records."""
        ...

    def retry_candidates(self, denied_offer_ids: AbstractSet[int], max_retry_count: int) -> List[FailedRecord]:
        ...


class PostgresStore:
    """PostgreSQL store; one short-lived connection per operation."""

    def __init__(self, conn_string: str) -> None:
        """Initialize Postgres store.

        Parameters
        ----------
        conn_string : str
            PostgreSQL connection string
        """
        self.conn_string = conn_string
        self._ensure_tables()

    @contextmanager
    def _connection(self) -> Iterator[psycopg2.extensions.connection]:
        conn = psycopg2.connect(self.conn_string)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        """Create tables if not exists."""
        create_sql = """
        CREATE TABLE IF NOT EXISTS product (
            id_product TEXT PRIMARY KEY,
            id_product_smi TEXT NOT NULL UNIQUE,
            offer_id BIGINT NOT NULL,
            url TEXT NOT NULL,
            product_name TEXT NOT NULL,
            available_color TEXT,
            category TEXT,
            subcategory TEXT,
            description TEXT,
            price TEXT,
            currency TEXT,
            availability BOOLEAN,
            keys TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS failed (
            id_product_smi TEXT PRIMARY KEY,
            url TEXT NOT NULL,
            offer_id BIGINT NOT NULL,
            error_message TEXT NOT NULL,
            retry_count INTEGER NOT NULL DEFAULT 0,
            resolved BOOLEAN NOT NULL DEFAULT FALSE,
            ignore BOOLEAN NOT NULL DEFAULT FALSE,
            id_product TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_failed_pending
            ON failed(resolved, ignore, retry_count);

        CREATE TABLE IF NOT EXISTS invalid (
            id_product_smi TEXT NOT NULL,
            offer_id BIGINT NOT NULL,
            url TEXT NOT NULL,
            reason TEXT NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            PRIMARY KEY (id_product_smi, offer_id)
        );
        """
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(create_sql)

        LOGGER.info("Ensured product, failed and invalid tables exist")

    def insert_product(self, product: ProductRecord) -> bool:
        insert_sql = """
        INSERT INTO product (
            id_product, id_product_smi, offer_id, url, product_name,
            available_color, category, subcategory, description,
            price, currency, availability, keys
        )
        VALUES (
            %(id_product)s, %(id_product_smi)s, %(offer_id)s, %(url)s, %(product_name)s,
            %(available_color)s, %(category)s, %(subcategory)s, %(description)s,
            %(price)s, %(currency)s, %(availability)s, %(keys)s
        )
        ON CONFLICT (id_product_smi) DO NOTHING
        """
        params = product.model_dump()
        params["id_product"] = str(product.id_product)
        params["price"] = None if product.price is None else str(product.price)

        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(insert_sql, params)
                    inserted = cur.rowcount == 1
        except pg_errors.UniqueViolation as exc:
            LOGGER.warning("Product %s already exists: %s", product.id_product, exc.pgerror)
            raise DuplicateProductError() from exc

        if not inserted:
            LOGGER.info("Product for key %s already stored, skipping", product.id_product_smi)
        return inserted

    def upsert_failed(
        self,
        id_product_smi: str,
        url: str,
        offer_id: int,
        error_message: str,
        id_product: Optional[str] = None,
    ) -> FailedRecord:
        upsert_sql = """
        INSERT INTO failed (id_product_smi, url, offer_id, error_message, retry_count, id_product)
        VALUES (%s, %s, %s, %s, 0, %s)
        ON CONFLICT (id_product_smi) DO UPDATE
        SET url = EXCLUDED.url,
            offer_id = EXCLUDED.offer_id,
            error_message = EXCLUDED.error_message,
            retry_count = failed.retry_count + 1,
            id_product = COALESCE(EXCLUDED.id_product, failed.id_product),
            updated_at = NOW()
        RETURNING id_product_smi, url, offer_id, error_message, retry_count,
                  resolved, ignore, id_product, updated_at
        """
        with self._connection() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cur:
                cur.execute(upsert_sql, (id_product_smi, url, offer_id, error_message, id_product))
                row = cur.fetchone()

        return FailedRecord(**dict(row))

    def insert_invalid(self, record: InvalidRecord) -> None:
        insert_sql = """
        INSERT INTO invalid (id_product_smi, offer_id, url, reason)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (id_product_smi, offer_id) DO UPDATE
        SET url = EXCLUDED.url,
            reason = EXCLUDED.reason
        """
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(insert_sql, (record.id_product_smi, record.offer_id, record.url, record.reason))

    def get_failed(self, id_product_smi: str) -> Optional[FailedRecord]:
        select_sql = """
        SELECT id_product_smi, url, offer_id, error_message, retry_count,
               resolved, ignore, id_product, updated_at
        FROM failed
        WHERE id_product_smi = %s
        """
        with self._connection() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cur:
                cur.execute(select_sql, (id_product_smi,))
                row = cur.fetchone()

        return FailedRecord(**dict(row)) if row else None

    def resolve_failed(self) -> int:
        update_sql = """
        UPDATE failed
        SET resolved = TRUE,
            updated_at = NOW()
        WHERE resolved = FALSE
          AND id_product_smi IN (SELECT id_product_smi FROM product)
        """
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(update_sql)
                return cur.rowcount

    def ignore_failed(self, messages: Iterable[str], max_retry_count: int) -> int:
        update_sql = """
        UPDATE failed
        SET ignore = TRUE,
            updated_at = NOW()
        WHERE ignore = FALSE
          AND (error_message = ANY(%s) OR retry_count >= %s OR resolved = TRUE)
        """
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(update_sql, (list(messages), max_retry_count))
                return cur.rowcount

    def retry_candidates(self, denied_offer_ids: AbstractSet[int], max_retry_count: int) -> List[FailedRecord]:
        select_sql = """
        SELECT id_product_smi, url, offer_id, error_message, retry_count,
               resolved, ignore, id_product, updated_at
        FROM failed
        WHERE resolved = FALSE
          AND ignore = FALSE
          AND retry_count < %s
          AND NOT (offer_id = ANY(%s::bigint[]))
        ORDER BY updated_at ASC
        """
        with self._connection() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cur:
                cur.execute(select_sql, (max_retry_count, sorted(denied_offer_ids)))
                rows = cur.fetchall()

        return [FailedRecord(**dict(row)) for row in rows]


class InMemoryStore:
    """Dict-backed store with the same semantics as :class:`PostgresStore`."""

    def __init__(self) -> None:
        self.products: Dict[str, ProductRecord] = {}
        self.failed: Dict[str, FailedRecord] = {}
        self.invalid: Dict[Tuple[str, int], InvalidRecord] = {}
        self._lock = threading.Lock()

    def product_keys(self) -> Set[str]:
        with self._lock:
            return {product.id_product_smi for product in self.products.values()}

    def insert_product(self, product: ProductRecord) -> bool:
        id_product = str(product.id_product)
        with self._lock:
            if any(existing.id_product_smi == product.id_product_smi for existing in self.products.values()):
                LOGGER.info("Product for key %s already stored, skipping", product.id_product_smi)
                return False
            if id_product in self.products:
                raise DuplicateProductError()
            self.products[id_product] = product
        return True

    def upsert_failed(
        self,
        id_product_smi: str,
        url: str,
        offer_id: int,
        error_message: str,
        id_product: Optional[str] = None,
    ) -> FailedRecord:
        with self._lock:
            existing = self.failed.get(id_product_smi)
            if existing is None:
                record = FailedRecord(
                    id_product_smi=id_product_smi,
                    url=url,
                    offer_id=offer_id,
                    error_message=error_message,
                    id_product=id_product,
                )
            else:
                record = existing.model_copy(
                    update={
                        "url": url,
                        "offer_id": offer_id,
                        "error_message": error_message,
                        "retry_count": existing.retry_count + 1,
                        "id_product": id_product if id_product is not None else existing.id_product,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
            self.failed[id_product_smi] = record
            return record

    def insert_invalid(self, record: InvalidRecord) -> None:
        with self._lock:
            self.invalid[(record.id_product_smi, record.offer_id)] = record

    def get_failed(self, id_product_smi: str) -> Optional[FailedRecord]:
        with self._lock:
            return self.failed.get(id_product_smi)

    def resolve_failed(self) -> int:
        keys = self.product_keys()
        return self._update_where(
            lambda record: not record.resolved and record.id_product_smi in keys,
            resolved=True,
        )

    def ignore_failed(self, messages: Iterable[str], max_retry_count: int) -> int:
        denied = set(messages)
        return self._update_where(
            lambda record: not record.ignore
            and (record.error_message in denied or record.retry_count >= max_retry_count or record.resolved),
            ignore=True,
        )

    def retry_candidates(self, denied_offer_ids: AbstractSet[int], max_retry_count: int) -> List[FailedRecord]:
        with self._lock:
            records = [
                record
                for record in self.failed.values()
                if not record.resolved
                and not record.ignore
                and record.retry_count < max_retry_count
                and record.offer_id not in denied_offer_ids
            ]
        return sorted(records, key=lambda record: record.updated_at)

    def _update_where(self, predicate, **changes) -> int:
        updated = 0
        with self._lock:
            for key, record in self.failed.items():
                if predicate(record):
                    self.failed[key] = record.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
                    updated += 1
        return updated
