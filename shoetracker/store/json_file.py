"""Record Store のJSONファイル実装（ローカルのキーバリューストア）。

コレクション全体を1つのJSONドキュメントとして保持し、
操作ごとに読み込み→変更→一時ファイル経由で置換、を行う。
変更操作はロックで直列化する（シングルライター）。
"""

import json
import logging
import os
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

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

SHOES_KEY = "shoes"
WEAR_LOGS_KEY = "wear_logs"


def _empty_document() -> dict[str, list[dict[str, Any]]]:
    return {SHOES_KEY: [], WEAR_LOGS_KEY: []}


class JsonFileRecordStore(RecordStoreInterface):
    """JSONファイルによる Record Store 実装。"""

    backend_name = "json"

    def __init__(self, path: str, clock: Callable[[], datetime] = utcnow):
        """初期化。

        Args:
            path: JSONファイルのパス（存在しなければ初回書き込み時に作成）
            clock: 現在時刻を返す関数（テスト用に差し替え可能）
        """
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)

    # ---------- ドキュメントの読み書き ----------

    def _load(self) -> dict[str, list[dict[str, Any]]]:
        """ドキュメント全体を読み込む。ファイルが無ければ空のドキュメント。"""
        if not self._path.exists():
            return _empty_document()
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"failed to read {self._path}: {e}") from e
        if not isinstance(document, dict):
            raise PersistenceError(f"unexpected document in {self._path}")
        document.setdefault(SHOES_KEY, [])
        document.setdefault(WEAR_LOGS_KEY, [])
        return document

    def _save(self, document: dict[str, list[dict[str, Any]]]) -> None:
        """一時ファイルに書き出してから置換する（途中状態を読ませない）。"""
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp_path.write_text(
                json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8"
            )
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"failed to write {self._path}: {e}") from e

    @staticmethod
    def _parse_shoe(record) -> Shoe:
        try:
            return Shoe.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"malformed shoe record: {e}") from e

    @staticmethod
    def _to_wear_logs(document) -> list[WearLog]:
        try:
            return [WearLog.from_record(r) for r in document[WEAR_LOGS_KEY]]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"malformed wear log record: {e}") from e

    @staticmethod
    def _find_shoe(document, shoe_id: str) -> int | None:
        for index, record in enumerate(document[SHOES_KEY]):
            if record.get("id") == shoe_id:
                return index
        return None

    @staticmethod
    def _count_wears(document, shoe_id: str) -> int:
        return sum(1 for r in document[WEAR_LOGS_KEY] if r.get("shoe_id") == shoe_id)

    # ---------- Shoe ----------

    def list_shoes(self) -> list[Shoe]:
        with self._lock:
            return [self._parse_shoe(r) for r in self._load()[SHOES_KEY]]

    def get_shoe(self, shoe_id: str) -> Shoe | None:
        with self._lock:
            document = self._load()
            index = self._find_shoe(document, shoe_id)
            if index is None:
                return None
            return self._parse_shoe(document[SHOES_KEY][index])

    def add_shoe(self, draft: ShoeDraft) -> Shoe:
        shoe = draft.build(str(uuid.uuid4()), self._clock())
        with self._lock:
            document = self._load()
            document[SHOES_KEY].append(shoe.to_record())
            self._save(document)
        logger.info("shoe added", extra={"shoe_id": shoe.id, "backend": self.backend_name})
        return shoe

    def update_shoe(self, shoe_id: str, update: ShoeUpdate) -> Shoe | None:
        with self._lock:
            document = self._load()
            index = self._find_shoe(document, shoe_id)
            if index is None:
                logger.debug("update skipped, shoe not found", extra={"shoe_id": shoe_id})
                return None
            shoe = update.apply(self._parse_shoe(document[SHOES_KEY][index]))
            document[SHOES_KEY][index] = shoe.to_record()
            self._save(document)
        return shoe

    def delete_shoe(self, shoe_id: str) -> bool:
        with self._lock:
            document = self._load()
            index = self._find_shoe(document, shoe_id)
            before = len(document[WEAR_LOGS_KEY])
            document[WEAR_LOGS_KEY] = [
                r for r in document[WEAR_LOGS_KEY] if r.get("shoe_id") != shoe_id
            ]
            removed_logs = before - len(document[WEAR_LOGS_KEY])
            if index is None and removed_logs == 0:
                return False
            if index is not None:
                del document[SHOES_KEY][index]
            self._save(document)
        logger.info(
            "shoe deleted",
            extra={"shoe_id": shoe_id, "removed_wear_logs": removed_logs},
        )
        return index is not None

    # ---------- WearLog ----------

    def list_wear_logs(self) -> list[WearLog]:
        with self._lock:
            return self._to_wear_logs(self._load())

    def list_wear_logs_for_shoe(self, shoe_id: str) -> list[WearLog]:
        return [log for log in self.list_wear_logs() if log.shoe_id == shoe_id]

    def log_wear(self, shoe_id: str, worn_at: datetime | None = None) -> WearEvent:
        log = WearLog(
            id=str(uuid.uuid4()),
            shoe_id=shoe_id,
            worn_at=normalize_timestamp(worn_at or self._clock()),
        )
        shoe = None
        # 着用記録の追加とカウンタ更新は同じドキュメントへの1回の書き込みで反映する
        with self._lock:
            document = self._load()
            document[WEAR_LOGS_KEY].append(log.to_record())
            index = self._find_shoe(document, shoe_id)
            if index is not None:
                record = document[SHOES_KEY][index]
                record["wear_count"] = self._count_wears(document, shoe_id)
                shoe = self._parse_shoe(record)
            self._save(document)

        if shoe is None:
            logger.warning("wear logged for unknown shoe", extra={"shoe_id": shoe_id})
        else:
            logger.info(
                "wear logged",
                extra={"shoe_id": shoe_id, "wear_count": shoe.wear_count},
            )
        return WearEvent(log=log, shoe=shoe)

    def reconcile_wear_counts(self) -> int:
        changed = 0
        with self._lock:
            document = self._load()
            for record in document[SHOES_KEY]:
                actual = self._count_wears(document, record["id"])
                if record.get("wear_count") != actual:
                    record["wear_count"] = actual
                    changed += 1
            if changed:
                self._save(document)
        logger.info("wear counts reconciled", extra={"changed": changed})
        return changed

    def delete_all_data(self) -> None:
        with self._lock:
            self._save(_empty_document())
