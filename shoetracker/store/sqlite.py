"""Record Store のSQLite実装（リレーショナルストア）。

RecordStoreInterface に準拠したSQLite実装を提供する。
複数の書き込みを伴う操作は1トランザクションで実行する。
"""

import logging
import sqlite3
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from shoetracker.interfaces.errors import PersistenceError
from shoetracker.interfaces.record_store import (
    RecordStoreInterface,
    Shoe,
    ShoeDraft,
    ShoeUpdate,
    WearEvent,
    WearLog,
    normalize_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

# スキーマ定義
# wear_logs.shoe_id には外部キー制約を張らない（孤立レコードを許容するため）。
# カスケード削除は delete_shoe() のトランザクション内で明示的に行う。
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS shoes (
    seq           INTEGER PRIMARY KEY AUTOINCREMENT,
    id            TEXT NOT NULL UNIQUE,
    name          TEXT NOT NULL,
    brand         TEXT NOT NULL,
    price         REAL NOT NULL DEFAULT 0,
    size          TEXT,
    color         TEXT,
    occasion      TEXT,
    type          TEXT,
    purchase_date TEXT,
    image_url     TEXT,
    wear_count    INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS wear_logs (
    seq      INTEGER PRIMARY KEY AUTOINCREMENT,
    id       TEXT NOT NULL UNIQUE,
    shoe_id  TEXT NOT NULL,
    worn_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_wear_logs_shoe
    ON wear_logs(shoe_id);
"""

SHOE_COLUMNS = (
    "id, name, brand, price, size, color, occasion, type,"
    " purchase_date, image_url, wear_count, created_at"
)

WEAR_COUNT_SUBQUERY = "(SELECT COUNT(*) FROM wear_logs w WHERE w.shoe_id = shoes.id)"


class SqliteRecordStore(RecordStoreInterface):
    """SQLiteによる Record Store 実装。"""

    backend_name = "sqlite"

    def __init__(self, db_path: str, clock: Callable[[], datetime] = utcnow):
        """初期化。

        Args:
            db_path: SQLiteデータベースファイルのパス
            clock: 現在時刻を返す関数（テスト用に差し替え可能）
        """
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to open {db_path}: {e}") from e

    def close(self) -> None:
        """接続を閉じる。"""
        self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """書き込みを直列化し、ブロック全体を1トランザクションとして実行する。"""
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise PersistenceError(str(e)) from e

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(str(e)) from e

    @staticmethod
    def _select_shoe(conn: sqlite3.Connection, shoe_id: str) -> Shoe | None:
        row = conn.execute(
            f"SELECT {SHOE_COLUMNS} FROM shoes WHERE id = ?", (shoe_id,)
        ).fetchone()
        if row is None:
            return None
        return Shoe.from_record(dict(row))

    # ---------- Shoe ----------

    def list_shoes(self) -> list[Shoe]:
        rows = self._fetchall(f"SELECT {SHOE_COLUMNS} FROM shoes ORDER BY seq ASC")
        return [Shoe.from_record(dict(row)) for row in rows]

    def get_shoe(self, shoe_id: str) -> Shoe | None:
        rows = self._fetchall(
            f"SELECT {SHOE_COLUMNS} FROM shoes WHERE id = ?", (shoe_id,)
        )
        if not rows:
            return None
        return Shoe.from_record(dict(rows[0]))

    def add_shoe(self, draft: ShoeDraft) -> Shoe:
        shoe = draft.build(str(uuid.uuid4()), self._clock())
        record = shoe.to_record()
        with self._transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO shoes ({SHOE_COLUMNS})
                VALUES (:id, :name, :brand, :price, :size, :color, :occasion,
                        :type, :purchase_date, :image_url, :wear_count, :created_at)
                """,
                record,
            )
        logger.info("shoe added", extra={"shoe_id": shoe.id, "backend": self.backend_name})
        return shoe

    def update_shoe(self, shoe_id: str, update: ShoeUpdate) -> Shoe | None:
        with self._transaction() as conn:
            current = self._select_shoe(conn, shoe_id)
            if current is None:
                logger.debug("update skipped, shoe not found", extra={"shoe_id": shoe_id})
                return None
            shoe = update.apply(current)
            conn.execute(
                """
                UPDATE shoes
                SET name = :name, brand = :brand, price = :price, size = :size,
                    color = :color, occasion = :occasion, type = :type,
                    purchase_date = :purchase_date, image_url = :image_url
                WHERE id = :id
                """,
                shoe.to_record(),
            )
        return shoe

    def delete_shoe(self, shoe_id: str) -> bool:
        with self._transaction() as conn:
            removed_logs = conn.execute(
                "DELETE FROM wear_logs WHERE shoe_id = ?", (shoe_id,)
            ).rowcount
            deleted = conn.execute("DELETE FROM shoes WHERE id = ?", (shoe_id,)).rowcount
        if deleted:
            logger.info(
                "shoe deleted",
                extra={"shoe_id": shoe_id, "removed_wear_logs": removed_logs},
            )
        return deleted > 0

    # ---------- WearLog ----------

    def list_wear_logs(self) -> list[WearLog]:
        rows = self._fetchall("SELECT id, shoe_id, worn_at FROM wear_logs ORDER BY seq ASC")
        return [WearLog.from_record(dict(row)) for row in rows]

    def list_wear_logs_for_shoe(self, shoe_id: str) -> list[WearLog]:
        rows = self._fetchall(
            "SELECT id, shoe_id, worn_at FROM wear_logs WHERE shoe_id = ? ORDER BY seq ASC",
            (shoe_id,),
        )
        return [WearLog.from_record(dict(row)) for row in rows]

    def log_wear(self, shoe_id: str, worn_at: datetime | None = None) -> WearEvent:
        log = WearLog(
            id=str(uuid.uuid4()),
            shoe_id=shoe_id,
            worn_at=normalize_timestamp(worn_at or self._clock()),
        )
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO wear_logs (id, shoe_id, worn_at) VALUES (:id, :shoe_id, :worn_at)",
                log.to_record(),
            )
            # 加算ではなく件数から再計算する（再実行しても値がずれない）
            conn.execute(
                f"UPDATE shoes SET wear_count = {WEAR_COUNT_SUBQUERY} WHERE id = ?",
                (shoe_id,),
            )
            shoe = self._select_shoe(conn, shoe_id)

        if shoe is None:
            logger.warning("wear logged for unknown shoe", extra={"shoe_id": shoe_id})
        else:
            logger.info(
                "wear logged",
                extra={"shoe_id": shoe_id, "wear_count": shoe.wear_count},
            )
        return WearEvent(log=log, shoe=shoe)

    def reconcile_wear_counts(self) -> int:
        with self._transaction() as conn:
            changed = conn.execute(
                f"""
                UPDATE shoes
                SET wear_count = {WEAR_COUNT_SUBQUERY}
                WHERE wear_count != {WEAR_COUNT_SUBQUERY}
                """
            ).rowcount
        logger.info("wear counts reconciled", extra={"changed": changed})
        return changed

    def delete_all_data(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM wear_logs")
            conn.execute("DELETE FROM shoes")
