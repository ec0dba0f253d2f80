from decimal import Decimal

import pytest

from sizewatch.services.alert_dispatcher import AlertDispatcher, format_alert_message, format_threshold_percent
from sizewatch.services.growth_evaluator import GrowthAlert
from sizewatch.settings import Settings

ALERT = GrowthAlert(
    server_alias="Copernico",
    label="CO_DTH_BASE_Data",
    baseline_mb=Decimal("1000.00"),
    new_mb=Decimal("1035.01"),
)


def _dispatcher(session, recipients=("+570001", "+570002")) -> AlertDispatcher:
    return AlertDispatcher(
        gateway_url="https://gateway.example/whatsapp.php",
        api_key="key-123",
        recipients=recipients,
        timeout=7,
        session=session,
    )


@pytest.mark.unit
def test_format_alert_message() -> None:
    assert format_alert_message(ALERT) == (
        "Alert! CO_DTH_BASE_Data on Copernico grew from 1000.00MB to 1035.01MB (>3%)."
    )


@pytest.mark.unit
@pytest.mark.parametrize(("threshold", "expected"), [("0.03", "3"), ("0.10", "10"), ("0.025", "2.5")])
def test_format_threshold_percent(threshold, expected) -> None:
    assert format_threshold_percent(Decimal(threshold)) == expected


@pytest.mark.unit
def test_dispatch_sends_to_every_recipient(fake_session) -> None:
    session = fake_session()

    summary = _dispatcher(session).dispatch([ALERT])

    assert summary.sent == 2
    assert summary.failed == 0
    assert [call["params"]["phone"] for call in session.calls] == ["+570001", "+570002"]
    first = session.calls[0]
    assert first["url"] == "https://gateway.example/whatsapp.php"
    assert first["params"]["apikey"] == "key-123"
    assert first["params"]["text"] == format_alert_message(ALERT)
    assert first["timeout"] == 7


@pytest.mark.unit
def test_dispatch_failure_for_one_recipient_continues(fake_session) -> None:
    session = fake_session(failing_recipients={"+570001"}, status_by_recipient={"+570002": 500})

    summary = _dispatcher(session, recipients=("+570001", "+570002", "+570003")).dispatch([ALERT])

    assert len(session.calls) == 3
    assert summary.sent == 1
    assert summary.failed == 2


@pytest.mark.unit
def test_dispatch_skips_when_gateway_not_configured(fake_session) -> None:
    session = fake_session()
    dispatcher = _dispatcher(session, recipients=())

    summary = dispatcher.dispatch([ALERT])

    assert summary.skipped is True
    assert session.calls == []


@pytest.mark.unit
def test_dispatch_without_alerts_is_noop(fake_session) -> None:
    session = fake_session()

    summary = _dispatcher(session).dispatch([])

    assert summary.sent == 0
    assert session.calls == []


@pytest.mark.unit
def test_from_settings_reads_gateway_configuration(fake_session) -> None:
    settings = Settings(ALERT_API_KEY="abc", ALERT_RECIPIENTS="+571, +572", ALERT_TIMEOUT="3")

    dispatcher = AlertDispatcher.from_settings(settings, session=fake_session())

    assert dispatcher.configured is True
    assert dispatcher.recipients == ("+571", "+572")
    assert dispatcher.timeout == 3
    assert dispatcher.gateway_url == "https://api.callmebot.com/whatsapp.php"


@pytest.mark.unit
def test_format_alert_message_rounds_unrounded_sizes() -> None:
    alert = GrowthAlert(
        server_alias="Copernico",
        label="SAC_Data",
        baseline_mb=Decimal("69.00"),
        new_mb=Decimal("71.0703125"),
    )

    assert format_alert_message(alert) == "Alert! SAC_Data on Copernico grew from 69.00MB to 71.07MB (>3%)."
