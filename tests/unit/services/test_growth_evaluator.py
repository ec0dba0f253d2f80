from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from sizewatch.constants import SizeSegment
from sizewatch.services.growth_evaluator import GrowthEvaluator, exceeds_threshold
from sizewatch.services.size_collection.collector import Measurement, pages_to_mb

TODAY = date(2026, 3, 10)


def _lookup_from(history: dict):
    calls: list[tuple[str, str, date]] = []

    def _lookup(server_alias, label, before):
        calls.append((server_alias, label, before))
        size = history.get((server_alias, label))
        if size is None:
            return None
        return SimpleNamespace(size_mb=Decimal(size), captured_date=date(2026, 3, 9))

    _lookup.calls = calls
    return _lookup


@pytest.mark.unit
@pytest.mark.parametrize(
    ("baseline", "new", "expected"),
    [
        ("1000.00", "1035.01", True),
        ("1000.00", "1030.00", False),
        ("1000.00", "1030.01", True),
        ("1000.00", "900.00", False),
        ("0", "0.01", True),
        ("0", "0", False),
    ],
)
def test_exceeds_threshold_is_strict(baseline, new, expected) -> None:
    assert exceeds_threshold(Decimal(baseline), Decimal(new), Decimal("0.03")) is expected


@pytest.mark.unit
def test_evaluate_without_baseline_never_alerts(make_measurement) -> None:
    evaluator = GrowthEvaluator(baseline_lookup=_lookup_from({}))

    evaluations = evaluator.evaluate("Copernico", [make_measurement("SAC", data_mb="99999.00")], TODAY)

    assert len(evaluations) == 1
    assert evaluations[0].label == "SAC_Data"
    assert evaluations[0].baseline_mb is None
    assert evaluations[0].alert is None


@pytest.mark.unit
def test_evaluate_emits_alert_with_alias_and_sizes(make_measurement) -> None:
    lookup = _lookup_from({("Copernico", "SAC_Data"): "1000.00"})
    evaluator = GrowthEvaluator(baseline_lookup=lookup)

    evaluations = evaluator.evaluate("Copernico", [make_measurement("SAC", data_mb="1035.01")], TODAY)

    alert = evaluations[0].alert
    assert alert is not None
    assert alert.server_alias == "Copernico"
    assert alert.label == "SAC_Data"
    assert alert.baseline_mb == Decimal("1000.00")
    assert alert.new_mb == Decimal("1035.01")
    assert lookup.calls == [("Copernico", "SAC_Data", TODAY)]


@pytest.mark.unit
def test_evaluate_at_threshold_does_not_alert(make_measurement) -> None:
    evaluator = GrowthEvaluator(baseline_lookup=_lookup_from({("Copernico", "SAC_Data"): "1000.00"}))

    evaluations = evaluator.evaluate("Copernico", [make_measurement("SAC", data_mb="1030.00")], TODAY)

    assert evaluations[0].baseline_mb == Decimal("1000.00")
    assert evaluations[0].alert is None


@pytest.mark.unit
def test_evaluate_tracks_log_segment_only_when_enabled(make_measurement) -> None:
    history = {("Jupiter_AWS", "BI_Log"): "10.00"}
    measurement = make_measurement("BI", data_mb="50.00", log_mb="20.00")

    data_only = GrowthEvaluator(baseline_lookup=_lookup_from(history))
    with_log = GrowthEvaluator(
        segments=(SizeSegment.DATA, SizeSegment.LOG),
        baseline_lookup=_lookup_from(history),
    )

    assert [e.label for e in data_only.evaluate("Jupiter_AWS", [measurement], TODAY)] == ["BI_Data"]
    evaluations = with_log.evaluate("Jupiter_AWS", [measurement], TODAY)
    assert [e.label for e in evaluations] == ["BI_Data", "BI_Log"]
    assert evaluations[1].new_mb == Decimal("20.00")
    assert evaluations[1].alert is not None


@pytest.mark.unit
def test_evaluate_uses_configured_threshold(make_measurement) -> None:
    evaluator = GrowthEvaluator(
        threshold=Decimal("0.10"),
        baseline_lookup=_lookup_from({("Copernico", "SAC_Data"): "1000.00"}),
    )

    evaluations = evaluator.evaluate("Copernico", [make_measurement("SAC", data_mb="1050.00")], TODAY)

    assert evaluations[0].alert is None


@pytest.mark.unit
def test_evaluate_compares_unrounded_size_against_baseline() -> None:
    # 9097 页 = 71.0703125MB,刚好超过 69.00 * 1.03 = 71.07,按两位小数舍入后会漏报
    measurement = Measurement(database_name="SAC", data_mb=pages_to_mb(9097), log_mb=pages_to_mb(0))
    evaluator = GrowthEvaluator(baseline_lookup=_lookup_from({("Copernico", "SAC_Data"): "69.00"}))

    evaluations = evaluator.evaluate("Copernico", [measurement], TODAY)

    assert evaluations[0].new_mb == Decimal("71.0703125")
    assert evaluations[0].alert is not None
    assert evaluations[0].alert.new_mb == Decimal("71.0703125")
