"""環境変数からの設定読み込み。"""

import os
from dataclasses import dataclass
from pathlib import Path

BACKENDS = ("json", "sqlite")


@dataclass(frozen=True)
class Settings:
    """アプリケーション設定。

    backend で Record Store の実装を選択する（json / sqlite）。
    """

    backend: str = "json"
    data_dir: str = "data"
    json_path: str | None = None
    sqlite_path: str | None = None
    log_level: str = "INFO"

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(
                f"Unknown backend: {self.backend!r} (expected one of {', '.join(BACKENDS)})"
            )

    @property
    def resolved_json_path(self) -> str:
        return self.json_path or str(Path(self.data_dir) / "shoes.json")

    @property
    def resolved_sqlite_path(self) -> str:
        return self.sqlite_path or str(Path(self.data_dir) / "shoes.db")

    @classmethod
    def from_env(cls) -> "Settings":
        """環境変数から設定を構築する。未設定の項目は既定値。"""

        def get_value(key: str) -> str | None:
            value = os.getenv(key, "").strip()
            return value or None

        return cls(
            backend=(get_value("SHOETRACKER_BACKEND") or "json").lower(),
            data_dir=get_value("SHOETRACKER_DATA_DIR") or "data",
            json_path=get_value("SHOETRACKER_JSON_PATH"),
            sqlite_path=get_value("SHOETRACKER_SQLITE_PATH"),
            log_level=(get_value("LOG_LEVEL") or "INFO").upper(),
        )
