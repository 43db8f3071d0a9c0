"""DI用ファクトリ関数。

shoetracker/ 直下に配置することで、api/ から store/ への
直接依存を避けつつ、FastAPI の Depends() で注入できる。
"""

from shoetracker.config import Settings
from shoetracker.interfaces.record_store import RecordStoreInterface

_settings: Settings | None = None
_record_store: RecordStoreInterface | None = None


def get_settings() -> Settings:
    """環境変数から読み込んだ設定のシングルトンを返す。"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def build_record_store(settings: Settings) -> RecordStoreInterface:
    """設定に応じた Record Store 実装を生成する。"""
    if settings.backend == "sqlite":
        from shoetracker.store.sqlite import SqliteRecordStore

        return SqliteRecordStore(settings.resolved_sqlite_path)

    from shoetracker.store.json_file import JsonFileRecordStore

    return JsonFileRecordStore(settings.resolved_json_path)


def get_record_store() -> RecordStoreInterface:
    """RecordStoreのシングルトンインスタンスを返す。"""
    global _record_store
    if _record_store is None:
        _record_store = build_record_store(get_settings())
    return _record_store


def _reset_all() -> None:
    """全シングルトンをリセットする（テスト用）。"""
    global _settings, _record_store
    _settings = None
    _record_store = None
