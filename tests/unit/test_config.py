"""設定とDIファクトリのテスト。"""

import pytest

from shoetracker.config import Settings
from shoetracker.dependencies import _reset_all, build_record_store, get_record_store


@pytest.fixture(autouse=True)
def _reset():
    _reset_all()
    yield
    _reset_all()


class TestSettings:
    def test_defaults(self, monkeypatch):
        for key in (
            "SHOETRACKER_BACKEND",
            "SHOETRACKER_DATA_DIR",
            "SHOETRACKER_JSON_PATH",
            "SHOETRACKER_SQLITE_PATH",
            "LOG_LEVEL",
        ):
            monkeypatch.delenv(key, raising=False)

        settings = Settings.from_env()

        assert settings.backend == "json"
        assert settings.resolved_json_path.endswith("shoes.json")
        assert settings.resolved_sqlite_path.endswith("shoes.db")
        assert settings.log_level == "INFO"

    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SHOETRACKER_BACKEND", "SQLite")
        monkeypatch.setenv("SHOETRACKER_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.backend == "sqlite"
        assert settings.resolved_sqlite_path == str(tmp_path / "shoes.db")
        assert settings.log_level == "DEBUG"

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError):
            Settings(backend="postgres")


class TestBuildRecordStore:
    """設定によるバックエンドの選択。"""

    def test_json_backend(self, tmp_path):
        store = build_record_store(Settings(backend="json", data_dir=str(tmp_path)))
        assert store.backend_name == "json"

    def test_sqlite_backend(self, tmp_path):
        store = build_record_store(
            Settings(backend="sqlite", sqlite_path=str(tmp_path / "x.db"))
        )
        assert store.backend_name == "sqlite"
        store.close()

    def test_singleton_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SHOETRACKER_BACKEND", "json")
        monkeypatch.setenv("SHOETRACKER_DATA_DIR", str(tmp_path))
        assert get_record_store() is get_record_store()
