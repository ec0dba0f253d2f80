import pytest

from sizewatch.errors import ConfigurationError
from sizewatch.services.server_profiles import ServerProfile, build_server_profiles, load_server_profiles
from sizewatch.settings import DEFAULT_SERVERS_CONFIG_PATH, Settings

CONN = "Server=10.0.0.{n},1433;Database=master;User Id=monitor;Password=secret"


@pytest.mark.unit
def test_default_server_list_matches_known_servers(monkeypatch) -> None:
    monkeypatch.setenv(
        "CONNECTION_STRINGS",
        '{"Server1": "%s", "Server2": "%s", "Server3": "%s"}' % (CONN.format(n=1), CONN.format(n=2), CONN.format(n=3)),
    )

    profiles = load_server_profiles(Settings())

    by_id = {profile.id: profile for profile in profiles}
    assert [profile.id for profile in profiles] == ["Server1", "Server2", "Server3"]
    assert by_id["Server1"].display_name == "Jupiter_AWS"
    assert by_id["Server2"].display_name == "Copernico"
    assert by_id["Server3"].display_name == "Copernico"
    assert by_id["Server2"].whitelist == frozenset({"CO_DTH_ADAPTER", "CO_DTH_BASE"})
    assert "db.e-BussinessINVOIC" in by_id["Server3"].whitelist
    assert len(by_id["Server1"].whitelist) == 8


@pytest.mark.unit
def test_servers_without_connection_string_are_skipped() -> None:
    settings = Settings(SERVERS_CONFIG_PATH=str(DEFAULT_SERVERS_CONFIG_PATH))

    assert load_server_profiles(settings) == ()


@pytest.mark.unit
def test_alias_falls_back_to_host_and_whitelist_is_optional() -> None:
    profiles = build_server_profiles([{"id": "ServerX"}], {"ServerX": CONN.format(n=9)})

    assert profiles[0].alias is None
    assert profiles[0].whitelist is None
    assert profiles[0].display_name == "10.0.0.9"
    assert "secret" not in repr(profiles[0])


@pytest.mark.unit
@pytest.mark.parametrize(
    "entries",
    [
        [{"alias": "NoId"}],
        [{"id": "A"}, {"id": "A"}],
        [{"id": "A", "whitelist": "Fichas"}],
        [{"id": "A", "whitelist": ["Fichas", " "]}],
    ],
)
def test_invalid_entries_raise_configuration_error(entries) -> None:
    with pytest.raises(ConfigurationError):
        build_server_profiles(entries, {"A": CONN.format(n=1)})


@pytest.mark.unit
def test_invalid_connection_string_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        build_server_profiles([{"id": "A"}], {"A": "Database=master"})


@pytest.mark.unit
def test_load_from_yaml_file(tmp_path) -> None:
    config_file = tmp_path / "servers.yaml"
    config_file.write_text(
        "servers:\n"
        "  - id: Local\n"
        "    alias: Laptop\n"
        f"    connection: \"{CONN.format(n=5)}\"\n"
        "    whitelist: [Fichas]\n",
        encoding="utf-8",
    )

    profiles = load_server_profiles(Settings(SERVERS_CONFIG_PATH=str(config_file)))

    assert profiles == (
        ServerProfile(id="Local", connection_ref=CONN.format(n=5), alias="Laptop", whitelist=frozenset({"Fichas"})),
    )


@pytest.mark.unit
def test_missing_or_malformed_yaml(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        load_server_profiles(Settings(SERVERS_CONFIG_PATH=str(tmp_path / "missing.yaml")))

    broken = tmp_path / "broken.yaml"
    broken.write_text("servers: [\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_server_profiles(Settings(SERVERS_CONFIG_PATH=str(broken)))
