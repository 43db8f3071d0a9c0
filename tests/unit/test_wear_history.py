"""着用履歴集計のユニットテスト。"""

from datetime import date, datetime, timedelta, timezone

from shoetracker.history.aggregate import (
    WearHistoryEntry,
    cost_per_wear,
    group_by_date,
    join_with_shoes,
    local_day,
    summarize_collection,
)
from shoetracker.interfaces.record_store import Shoe, WearLog


def _entry(log_id: str, worn_at: datetime, shoe_id: str = "s1") -> WearHistoryEntry:
    return WearHistoryEntry(log_id=log_id, shoe_id=shoe_id, worn_at=worn_at)


class TestGroupByDate:
    """暦日ごとのグルーピング。"""

    def test_groups_ordered_by_date_desc(self):
        entries = [
            _entry("a", datetime(2024, 1, 2, 10, 0)),
            _entry("b", datetime(2024, 1, 1, 9, 0)),
            _entry("c", datetime(2024, 1, 2, 8, 0)),
        ]

        groups = group_by_date(entries)

        assert [g.day for g in groups] == [date(2024, 1, 2), date(2024, 1, 1)]
        assert [e.log_id for e in groups[0].entries] == ["a", "c"]
        assert [e.log_id for e in groups[1].entries] == ["b"]

    def test_identical_timestamps_keep_input_order(self):
        ts = datetime(2024, 3, 3, 12, 0)
        entries = [_entry("first", ts), _entry("second", ts), _entry("third", ts)]

        groups = group_by_date(entries)

        assert [e.log_id for e in groups[0].entries] == ["first", "second", "third"]

    def test_empty_input(self):
        assert group_by_date([]) == []

    def test_aware_timestamps_use_given_time_zone(self):
        """UTC 23:30 は UTC+9 では翌日になる。"""
        jst = timezone(timedelta(hours=9))
        entries = [
            _entry("late", datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc)),
            _entry("early", datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc)),
        ]

        by_utc = group_by_date(entries, tz=timezone.utc)
        by_jst = group_by_date(entries, tz=jst)

        assert [g.day for g in by_utc] == [date(2024, 1, 1)]
        assert [g.day for g in by_jst] == [date(2024, 1, 2), date(2024, 1, 1)]

    def test_does_not_mutate_input(self):
        entries = [
            _entry("old", datetime(2024, 1, 1)),
            _entry("new", datetime(2024, 1, 5)),
        ]
        group_by_date(entries)
        assert [e.log_id for e in entries] == ["old", "new"]


class TestLocalDay:
    def test_naive_timestamp_used_as_is(self):
        assert local_day(datetime(2024, 6, 30, 23, 59)) == date(2024, 6, 30)


class TestJoinWithShoes:
    """WearLog と Shoe の結合。"""

    def test_joins_shoe_fields(self):
        shoe = Shoe(id="s1", name="Samba", brand="Adidas", image_url="https://example.com/s.png")
        log = WearLog(id="l1", shoe_id="s1", worn_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        [entry] = join_with_shoes([log], [shoe])

        assert entry.log_id == "l1"
        assert entry.shoe_name == "Samba"
        assert entry.shoe_brand == "Adidas"
        assert entry.image_url == "https://example.com/s.png"
        assert entry.worn_at == log.worn_at

    def test_orphan_log_has_no_shoe_fields(self):
        log = WearLog(id="l1", shoe_id="ghost", worn_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        [entry] = join_with_shoes([log], [])

        assert entry.shoe_id == "ghost"
        assert entry.shoe_name is None
        assert entry.image_url is None


class TestSummary:
    """コレクションのサマリ。"""

    def test_summarize(self):
        shoes = [
            Shoe(id="a", name="A", brand="X", price=100.0, wear_count=4),
            Shoe(id="b", name="B", brand="Y", price=50.0, wear_count=6),
            Shoe(id="c", name="C", brand="Z", price=0.0, wear_count=6),
        ]

        summary = summarize_collection(shoes)

        assert summary.total_shoes == 3
        assert summary.total_wears == 16
        assert summary.total_value == 150.0
        assert summary.most_worn.id == "b"

    def test_most_worn_is_none_when_nothing_worn(self):
        shoes = [Shoe(id="a", name="A", brand="X")]
        assert summarize_collection(shoes).most_worn is None

    def test_empty_collection(self):
        summary = summarize_collection([])
        assert summary.total_shoes == 0
        assert summary.total_value == 0


class TestCostPerWear:
    def test_divides_price_by_wears(self):
        assert cost_per_wear(Shoe(id="a", name="A", brand="X", price=120.0, wear_count=4)) == 30.0

    def test_none_when_never_worn(self):
        assert cost_per_wear(Shoe(id="a", name="A", brand="X", price=120.0)) is None
