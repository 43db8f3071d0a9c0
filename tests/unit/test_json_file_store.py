"""JsonFileRecordStore 固有の動作テスト。"""

import json
import threading
from datetime import UTC, datetime

import pytest

from shoetracker.interfaces.errors import PersistenceError
from shoetracker.interfaces.record_store import ShoeDraft
from shoetracker.store.json_file import JsonFileRecordStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def path(tmp_path):
    return tmp_path / "nested" / "shoes.json"


class TestPersistence:
    """ファイルへの永続化。"""

    def test_data_survives_new_instance(self, path):
        store = JsonFileRecordStore(str(path))
        shoe = store.add_shoe(ShoeDraft(name="Chuck 70", brand="Converse"))
        store.log_wear(shoe.id)

        reopened = JsonFileRecordStore(str(path))
        assert reopened.get_shoe(shoe.id).wear_count == 1
        assert len(reopened.list_wear_logs()) == 1

    def test_document_shape(self, path):
        """ストレージ境界のレコード形式を検証する。"""
        store = JsonFileRecordStore(str(path), clock=lambda: FIXED_NOW)
        shoe = store.add_shoe(ShoeDraft(name="Chuck 70", brand="Converse", price=85.0))
        store.log_wear(shoe.id)

        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["shoes"][0]["id"] == shoe.id
        assert document["shoes"][0]["price"] == 85.0
        assert document["shoes"][0]["wear_count"] == 1
        assert document["shoes"][0]["created_at"] == "2024-05-01T12:00:00+00:00"
        assert document["wear_logs"][0] == {
            "id": document["wear_logs"][0]["id"],
            "shoe_id": shoe.id,
            "worn_at": "2024-05-01T12:00:00+00:00",
        }

    def test_missing_file_reads_as_empty(self, path):
        store = JsonFileRecordStore(str(path))
        assert store.list_shoes() == []
        assert not path.exists()

    def test_no_temp_file_left_behind(self, path):
        store = JsonFileRecordStore(str(path))
        store.add_shoe(ShoeDraft(name="a", brand="b"))
        assert [p.name for p in path.parent.iterdir()] == ["shoes.json"]


class TestFailures:
    """永続化エラーの伝播。"""

    def test_corrupted_file_raises_persistence_error(self, path):
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileRecordStore(str(path))

        with pytest.raises(PersistenceError):
            store.list_shoes()

    def test_malformed_record_raises_persistence_error(self, path):
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"shoes": [{"name": "no id"}]}), encoding="utf-8")
        store = JsonFileRecordStore(str(path))

        with pytest.raises(PersistenceError):
            store.list_shoes()

    def test_failed_write_leaves_log_wear_without_effect(self, path, monkeypatch):
        store = JsonFileRecordStore(str(path))
        shoe = store.add_shoe(ShoeDraft(name="a", brand="b"))
        store.log_wear(shoe.id)

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("shoetracker.store.json_file.os.replace", fail_replace)
        with pytest.raises(PersistenceError):
            store.log_wear(shoe.id)
        monkeypatch.undo()

        assert len(store.list_wear_logs()) == 1
        assert store.get_shoe(shoe.id).wear_count == 1
        assert [p.name for p in path.parent.iterdir()] == ["shoes.json"]


class TestReconcile:
    """wear_count のずれの修復。"""

    def test_reconcile_repairs_drifted_counter(self, path):
        store = JsonFileRecordStore(str(path))
        shoe = store.add_shoe(ShoeDraft(name="a", brand="b"))
        store.log_wear(shoe.id)

        # 外部の書き込みでカウンタがずれた状態を再現
        document = json.loads(path.read_text(encoding="utf-8"))
        document["shoes"][0]["wear_count"] = 7
        path.write_text(json.dumps(document), encoding="utf-8")

        assert store.reconcile_wear_counts() == 1
        assert store.get_shoe(shoe.id).wear_count == 1


class TestConcurrency:
    """同一プロセス内の並行書き込み。"""

    def test_concurrent_log_wear_does_not_lose_updates(self, path):
        store = JsonFileRecordStore(str(path))
        shoe = store.add_shoe(ShoeDraft(name="a", brand="b"))

        threads = [threading.Thread(target=store.log_wear, args=(shoe.id,)) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get_shoe(shoe.id).wear_count == 10
        assert len(store.list_wear_logs_for_shoe(shoe.id)) == 10
