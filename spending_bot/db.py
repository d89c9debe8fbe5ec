import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple, Type

import psycopg2
from psycopg2.extras import RealDictCursor

from spending_bot.errors import StorageError, StorageUnavailable, StorageWriteError
from spending_bot.models import ReportWindow, SpendingEntry

logger = logging.getLogger("spending-bot.db")


class Storage:
    """Spending log and monthly limits in PostgreSQL.

    Every call opens its own connection, runs inside one transaction and closes
    the connection again, so a failed call never leaves a partial write behind.
    """

    def __init__(self, dsn: str, sslmode: str = "prefer"):
        self.dsn = dsn
        self.sslmode = sslmode

    def _connect(self):
        try:
            return psycopg2.connect(self.dsn, sslmode=self.sslmode, cursor_factory=RealDictCursor)
        except psycopg2.Error as e:
            raise StorageUnavailable(f"cannot open database: {e}") from e

    @contextmanager
    def _cursor(self, error_cls: Type[StorageError] = StorageWriteError) -> Iterator:
        conn = self._connect()
        try:
            with conn, conn.cursor() as cur:
                yield cur
        except psycopg2.OperationalError as e:
            raise StorageUnavailable(str(e)) from e
        except psycopg2.Error as e:
            raise error_cls(str(e)) from e
        finally:
            conn.close()

    def init_schema(self):
        """Create tables if missing (idempotent)."""
        with self._cursor(StorageUnavailable) as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS spending_log (
                    record_id SERIAL PRIMARY KEY,
                    owner_id BIGINT NOT NULL,
                    cost NUMERIC NOT NULL,
                    spending_type TEXT NOT NULL,
                    notes TEXT NOT NULL,
                    created_date TEXT NOT NULL
                );
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_spending_log_owner_date
                ON spending_log (owner_id, created_date);
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS monthly_limits (
                    owner_id BIGINT PRIMARY KEY,
                    limit_amount NUMERIC NOT NULL
                );
            """)
        logger.info("Schema ready")

    def insert_entry(self, entry: SpendingEntry) -> int:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO spending_log (owner_id, cost, spending_type, notes, created_date)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING record_id;
            """, (entry.owner_id, entry.amount, entry.category, entry.note, entry.created_at_text))
            return int(cur.fetchone()["record_id"])

    def aggregate_by_category(self, owner_id: int, window: ReportWindow) -> List[Tuple[str, Decimal]]:
        with self._cursor(StorageError) as cur:
            if window.until is None:
                cur.execute("""
                    SELECT spending_type, SUM(cost) AS total
                    FROM spending_log
                    WHERE owner_id=%s AND created_date >= %s
                    GROUP BY spending_type
                    ORDER BY total DESC, spending_type ASC;
                """, (owner_id, window.since))
            else:
                cur.execute("""
                    SELECT spending_type, SUM(cost) AS total
                    FROM spending_log
                    WHERE owner_id=%s AND created_date >= %s AND created_date < %s
                    GROUP BY spending_type
                    ORDER BY total DESC, spending_type ASC;
                """, (owner_id, window.since, window.until))
            return [(r["spending_type"], Decimal(r["total"])) for r in cur.fetchall()]

    def upsert_limit(self, owner_id: int, amount: Decimal):
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO monthly_limits (owner_id, limit_amount)
                VALUES (%s, %s)
                ON CONFLICT (owner_id)
                DO UPDATE SET limit_amount = EXCLUDED.limit_amount;
            """, (owner_id, amount))

    def get_limit(self, owner_id: int) -> Optional[Decimal]:
        with self._cursor(StorageError) as cur:
            cur.execute("SELECT limit_amount FROM monthly_limits WHERE owner_id=%s;", (owner_id,))
            row = cur.fetchone()
            return Decimal(row["limit_amount"]) if row else None

    def delete_all_for_owner(self, owner_id: int):
        with self._cursor() as cur:
            cur.execute("DELETE FROM spending_log WHERE owner_id=%s;", (owner_id,))
            cur.execute("DELETE FROM monthly_limits WHERE owner_id=%s;", (owner_id,))
