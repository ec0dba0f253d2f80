from datetime import date
from decimal import Decimal

import pytest

from sizewatch import db
from sizewatch.errors import DuplicateSnapshotError
from sizewatch.models.size_snapshot import SizeSnapshot
from sizewatch.repositories.size_history_repository import SizeHistoryRepository


def _seed(server_alias: str, label: str, captured_date: date, size_mb: str) -> None:
    db.session.add(
        SizeSnapshot(server_alias=server_alias, label=label, captured_date=captured_date, size_mb=Decimal(size_mb)),
    )
    db.session.commit()


@pytest.mark.unit
def test_most_recent_before_returns_latest_strictly_earlier_day(app) -> None:
    _seed("Copernico", "SAC_Data", date(2026, 3, 1), "900.00")
    _seed("Copernico", "SAC_Data", date(2026, 3, 5), "1000.00")
    _seed("Copernico", "SAC_Data", date(2026, 3, 10), "1200.00")
    _seed("Jupiter_AWS", "SAC_Data", date(2026, 3, 9), "5.00")

    baseline = SizeHistoryRepository.most_recent_before("Copernico", "SAC_Data", date(2026, 3, 10))

    assert baseline is not None
    assert baseline.captured_date == date(2026, 3, 5)
    assert baseline.size_mb == Decimal("1000.00")


@pytest.mark.unit
def test_most_recent_before_without_history_returns_none(app) -> None:
    _seed("Copernico", "SAC_Data", date(2026, 3, 10), "1200.00")

    assert SizeHistoryRepository.most_recent_before("Copernico", "SAC_Data", date(2026, 3, 10)) is None
    assert SizeHistoryRepository.most_recent_before("Copernico", "DESADV_Data", date(2026, 3, 11)) is None


@pytest.mark.unit
def test_append_rejects_duplicate_key_without_touching_existing_row(app) -> None:
    _seed("Copernico", "SAC_Data", date(2026, 3, 10), "1200.00")

    with pytest.raises(DuplicateSnapshotError) as exc:
        SizeHistoryRepository.append("Copernico", "SAC_Data", date(2026, 3, 10), Decimal("1300.00"))

    assert exc.value.extra["label"] == "SAC_Data"
    rows = SizeHistoryRepository.list_for_date(date(2026, 3, 10))
    assert [(row.label, row.size_mb) for row in rows] == [("SAC_Data", Decimal("1200.00"))]


@pytest.mark.unit
def test_append_does_not_commit(app) -> None:
    SizeHistoryRepository.append("Copernico", "SAC_Data", date(2026, 3, 10), Decimal("1.00"))
    db.session.rollback()

    assert SizeHistoryRepository.list_for_date(date(2026, 3, 10)) == []


@pytest.mark.unit
def test_list_for_date_filters_by_server(app) -> None:
    _seed("Copernico", "SAC_Data", date(2026, 3, 10), "1.00")
    _seed("Jupiter_AWS", "BI_Data", date(2026, 3, 10), "2.00")

    rows = SizeHistoryRepository.list_for_date(date(2026, 3, 10), server_alias="Jupiter_AWS")

    assert [row.to_dict()["label"] for row in rows] == ["BI_Data"]
    assert rows[0].to_dict()["size_mb"] == "2.00"


@pytest.mark.unit
def test_append_stores_size_with_two_decimals(app) -> None:
    SizeHistoryRepository.append("Copernico", "SAC_Data", date(2026, 3, 10), Decimal("71.0703125"))
    SizeHistoryRepository.append("Copernico", "DESADV_Data", date(2026, 3, 10), Decimal("0.005"))
    db.session.commit()

    rows = SizeHistoryRepository.list_for_date(date(2026, 3, 10))

    assert [(row.label, row.size_mb) for row in rows] == [
        ("DESADV_Data", Decimal("0.01")),
        ("SAC_Data", Decimal("71.07")),
    ]
