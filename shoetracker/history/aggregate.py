"""着用履歴の集計（読み取り専用・副作用なし）。

WearLog を Shoe 情報と結合し、暦日ごとにグルーピングする。
コレクション全体のサマリ（所有数、総着用回数など）もここで算出する。
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, tzinfo

from shoetracker.interfaces.record_store import Shoe, WearLog


@dataclass(frozen=True)
class WearHistoryEntry:
    """Shoe 情報を結合した着用記録。孤立レコードでは shoe_* は None。"""

    log_id: str
    shoe_id: str
    worn_at: datetime
    shoe_name: str | None = None
    shoe_brand: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class WearHistoryGroup:
    """1日分の着用記録（worn_at 降順）。"""

    day: date
    entries: list[WearHistoryEntry]


@dataclass(frozen=True)
class CollectionSummary:
    """コレクション全体のサマリ。"""

    total_shoes: int
    total_wears: int
    total_value: float
    most_worn: Shoe | None


def join_with_shoes(
    logs: Sequence[WearLog], shoes: Sequence[Shoe]
) -> list[WearHistoryEntry]:
    """WearLog に Shoe の名前・ブランド・画像URLを結合する。入力順を保つ。"""
    by_id = {shoe.id: shoe for shoe in shoes}
    entries = []
    for log in logs:
        shoe = by_id.get(log.shoe_id)
        entries.append(
            WearHistoryEntry(
                log_id=log.id,
                shoe_id=log.shoe_id,
                worn_at=log.worn_at,
                shoe_name=shoe.name if shoe else None,
                shoe_brand=shoe.brand if shoe else None,
                image_url=shoe.image_url if shoe else None,
            )
        )
    return entries


def local_day(ts: datetime, tz: tzinfo | None = None) -> date:
    """タイムスタンプの暦日を返す。

    aware な値は tz（省略時はローカルタイムゾーン）に変換してから日付を取る。
    naive な値はそのまま日付を取る。
    """
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(tz).date()


def group_by_date(
    entries: Sequence[WearHistoryEntry], tz: tzinfo | None = None
) -> list[WearHistoryGroup]:
    """着用記録を暦日ごとにグルーピングする.

    Args:
        entries: 着用記録（順不同）
        tz: 暦日の判定に使うタイムゾーン（省略時はローカル）

    Returns:
        日付降順のグループのリスト。グループ内は worn_at 降順で、
        同一時刻の記録は入力順を保つ（安定ソート）。
    """
    # sorted は reverse=True でも安定
    ordered = sorted(entries, key=lambda e: e.worn_at, reverse=True)

    groups: dict[date, list[WearHistoryEntry]] = {}
    for entry in ordered:
        groups.setdefault(local_day(entry.worn_at, tz), []).append(entry)

    return [
        WearHistoryGroup(day=day, entries=groups[day])
        for day in sorted(groups, reverse=True)
    ]


def cost_per_wear(shoe: Shoe) -> float | None:
    """1回あたりの着用コスト。未着用なら None."""
    if shoe.wear_count <= 0:
        return None
    return shoe.price / shoe.wear_count


def summarize_collection(shoes: Sequence[Shoe]) -> CollectionSummary:
    """コレクションのサマリを算出する.

    most_worn は着用回数が最大（1回以上）の Shoe。同数なら先に現れた方。
    """
    most_worn = None
    for shoe in shoes:
        if shoe.wear_count > 0 and (
            most_worn is None or shoe.wear_count > most_worn.wear_count
        ):
            most_worn = shoe

    return CollectionSummary(
        total_shoes=len(shoes),
        total_wears=sum(shoe.wear_count for shoe in shoes),
        total_value=sum(shoe.price for shoe in shoes),
        most_worn=most_worn,
    )
