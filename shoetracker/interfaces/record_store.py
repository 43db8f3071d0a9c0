"""Record Store の抽象インターフェース（境界①）。

Record Store は Shoe と WearLog の2つのコレクションを所有し、
「Shoe.wear_count == その Shoe を参照する WearLog の件数」
という不変条件を全ての操作で維持する。
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from typing import Any

from shoetracker.interfaces.errors import ValidationError

# ShoeUpdate で変更可能なフィールド（id, wear_count, created_at は不可）
UPDATABLE_FIELDS = (
    "name",
    "brand",
    "price",
    "size",
    "color",
    "occasion",
    "type",
    "purchase_date",
    "image_url",
)


def utcnow() -> datetime:
    """ストアの既定クロック。"""
    return datetime.now(UTC)


def normalize_timestamp(ts: datetime) -> datetime:
    """タイムスタンプを UTC の aware datetime に揃える。

    naive な値はローカル時刻として解釈する。
    """
    return ts.astimezone(UTC)


# ---------- 入力値の正規化 ----------


def parse_price(value: Any) -> float:
    """価格を float に正規化する。

    未指定・空文字・数値として解釈できない値（NaN・無限大を含む）は 0.0 とする。
    負の値は ValidationError。
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        price = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(price):
        return 0.0
    if price < 0:
        raise ValidationError("price", "must not be negative")
    return price


def parse_purchase_date(value: Any) -> date | None:
    """購入日を date に正規化する。ISO形式の文字列も受け付ける。"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # 日時文字列は日付部分のみ使う
    if len(text) > 10 and text[10] in "T ":
        text = text[:10]
    try:
        return date.fromisoformat(text)
    except ValueError as e:
        raise ValidationError("purchase_date", f"invalid ISO date: {text!r}") from e


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_text(field_name: str, value: Any) -> str:
    text = _clean_text(value)
    if text is None:
        raise ValidationError(field_name, "is required")
    return text


def _parse_timestamp(value: str) -> datetime:
    return normalize_timestamp(datetime.fromisoformat(value))


# ---------- ドメインモデル ----------


@dataclass(frozen=True)
class Shoe:
    """靴1足（ドメインモデル）。"""

    id: str
    name: str
    brand: str
    price: float = 0.0
    size: str | None = None
    color: str | None = None
    occasion: str | None = None
    type: str | None = None
    purchase_date: date | None = None
    image_url: str | None = None
    wear_count: int = 0
    created_at: datetime | None = None

    def to_record(self) -> dict[str, Any]:
        """ストレージ境界のレコード形式（JSON互換の dict）に変換する。"""
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "price": self.price,
            "size": self.size,
            "color": self.color,
            "occasion": self.occasion,
            "type": self.type,
            "purchase_date": (
                self.purchase_date.isoformat() if self.purchase_date else None
            ),
            "image_url": self.image_url,
            "wear_count": self.wear_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Shoe":
        """to_record() の逆変換。"""
        created_at = record.get("created_at")
        return cls(
            id=str(record["id"]),
            name=record["name"],
            brand=record["brand"],
            price=float(record.get("price") or 0.0),
            size=record.get("size"),
            color=record.get("color"),
            occasion=record.get("occasion"),
            type=record.get("type"),
            purchase_date=parse_purchase_date(record.get("purchase_date")),
            image_url=record.get("image_url"),
            wear_count=int(record.get("wear_count") or 0),
            created_at=_parse_timestamp(created_at) if created_at else None,
        )


@dataclass(frozen=True)
class WearLog:
    """着用記録1件（ドメインモデル）。

    shoe_id は外部キー制約を持たない。参照先の Shoe が存在しない
    孤立レコードも許容する。
    """

    id: str
    shoe_id: str
    worn_at: datetime

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "shoe_id": self.shoe_id,
            "worn_at": self.worn_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "WearLog":
        return cls(
            id=str(record["id"]),
            shoe_id=str(record["shoe_id"]),
            worn_at=_parse_timestamp(record["worn_at"]),
        )


@dataclass(frozen=True)
class WearEvent:
    """log_wear() の結果。孤立した着用記録では shoe は None。"""

    log: WearLog
    shoe: Shoe | None


# ---------- 入力モデル ----------


@dataclass(frozen=True)
class ShoeDraft:
    """add_shoe() の入力。id と wear_count はストアが割り当てる。"""

    name: str
    brand: str
    price: float = 0.0
    size: str | None = None
    color: str | None = None
    occasion: str | None = None
    type: str | None = None
    purchase_date: date | None = None
    image_url: str | None = None

    def validate(self) -> None:
        """必須項目と価格を検証する。"""
        _require_text("name", self.name)
        _require_text("brand", self.brand)
        if not math.isfinite(self.price):
            raise ValidationError("price", "must be a finite number")
        if self.price < 0:
            raise ValidationError("price", "must not be negative")

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ShoeDraft":
        """フォーム由来の値を正規化して ShoeDraft を作る。

        空文字は None に、価格は parse_price() で、購入日は ISO 文字列から変換する。
        """
        return cls(
            name=_require_text("name", raw.get("name")),
            brand=_require_text("brand", raw.get("brand")),
            price=parse_price(raw.get("price")),
            size=_clean_text(raw.get("size")),
            color=_clean_text(raw.get("color")),
            occasion=_clean_text(raw.get("occasion")),
            type=_clean_text(raw.get("type")),
            purchase_date=parse_purchase_date(raw.get("purchase_date")),
            image_url=_clean_text(raw.get("image_url")),
        )

    def build(self, shoe_id: str, created_at: datetime) -> Shoe:
        """新規 Shoe を生成する（wear_count は 0）。"""
        self.validate()
        return Shoe(
            id=shoe_id,
            name=self.name.strip(),
            brand=self.brand.strip(),
            price=self.price,
            size=self.size,
            color=self.color,
            occasion=self.occasion,
            type=self.type,
            purchase_date=self.purchase_date,
            image_url=self.image_url,
            wear_count=0,
            created_at=normalize_timestamp(created_at),
        )


@dataclass(frozen=True)
class ShoeUpdate:
    """update_shoe() の部分更新。changes に含まれるフィールドのみ変更する。"""

    changes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ShoeUpdate":
        """指定されたキーだけを正規化して ShoeUpdate を作る。"""
        changes: dict[str, Any] = {}
        for key, value in raw.items():
            if key not in UPDATABLE_FIELDS:
                raise ValidationError(key, "is not an updatable field")
            if key in ("name", "brand"):
                changes[key] = _require_text(key, value)
            elif key == "price":
                changes[key] = parse_price(value)
            elif key == "purchase_date":
                changes[key] = parse_purchase_date(value)
            else:
                changes[key] = _clean_text(value)
        return cls(changes=changes)

    def apply(self, shoe: Shoe) -> Shoe:
        """既存の Shoe に変更をマージした新しい Shoe を返す。"""
        return replace(shoe, **self.changes)


# ---------- インターフェース ----------


class RecordStoreInterface(ABC):
    """Record Store の抽象インターフェース。

    全ての層はこのインターフェースを介してデータにアクセスする。
    バックエンド固有のコード（JSONファイル、SQLite）が他の層に漏洩してはならない。
    各操作は完全に反映されるか、例外が送出されるかのどちらかとなる。
    """

    backend_name: str = "abstract"

    # --- Shoe ---

    @abstractmethod
    def list_shoes(self) -> list[Shoe]:
        """全ての Shoe を登録順で取得する。"""
        ...

    @abstractmethod
    def get_shoe(self, shoe_id: str) -> Shoe | None:
        """指定IDの Shoe を取得する。存在しなければ None。"""
        ...

    @abstractmethod
    def add_shoe(self, draft: ShoeDraft) -> Shoe:
        """Shoe を新規登録する。

        新しいIDを割り当て、wear_count=0 で永続化する。

        Raises:
            ValidationError: name / brand が空、または価格が負
        """
        ...

    @abstractmethod
    def update_shoe(self, shoe_id: str, update: ShoeUpdate) -> Shoe | None:
        """指定されたフィールドのみを更新する。存在しなければ None。"""
        ...

    @abstractmethod
    def delete_shoe(self, shoe_id: str) -> bool:
        """Shoe を削除し、参照する WearLog もカスケード削除する。

        存在しないIDに対してはエラーにせず False を返す（冪等）。
        """
        ...

    # --- WearLog ---

    @abstractmethod
    def list_wear_logs(self) -> list[WearLog]:
        """全ての WearLog を登録順で取得する。"""
        ...

    @abstractmethod
    def list_wear_logs_for_shoe(self, shoe_id: str) -> list[WearLog]:
        """指定 Shoe の WearLog を登録順で取得する。"""
        ...

    @abstractmethod
    def log_wear(self, shoe_id: str, worn_at: datetime | None = None) -> WearEvent:
        """着用を記録する（複合操作）。

        1. WearLog を新規作成する（worn_at 省略時は現在時刻）
        2. Shoe が存在すれば wear_count を WearLog 件数から再計算する
        の2つの書き込みを1単位として原子的に実行する。
        Shoe が存在しない場合も WearLog は作成され、例外は送出しない。
        """
        ...

    @abstractmethod
    def reconcile_wear_counts(self) -> int:
        """全 Shoe の wear_count を WearLog 件数から再計算する。

        Returns:
            wear_count が変化した Shoe の数
        """
        ...

    @abstractmethod
    def delete_all_data(self) -> None:
        """全データを削除する（デバッグ用）。"""
        ...
