"""Tests for settings helpers."""
import pytest

from mockserver.config import Settings, parse_address_list, parse_port_spec


def test_single_port():
    assert parse_port_spec("5000") == [5000]


def test_port_range_is_inclusive():
    assert parse_port_spec("5000-5009") == list(range(5000, 5010))


def test_mixed_port_spec():
    assert parse_port_spec("5000-5002, 6000") == [5000, 5001, 5002, 6000]


def test_repeated_ephemeral_ports():
    assert parse_port_spec("0,0,0") == [0, 0, 0]


@pytest.mark.parametrize("spec", ["", " , ", "5009-5000", "70000", "abc"])
def test_invalid_port_specs(spec):
    with pytest.raises(ValueError):
        parse_port_spec(spec)


def test_address_list():
    assert parse_address_list("127.0.0.1, ::1") == ["127.0.0.1", "::1"]
    with pytest.raises(ValueError):
        parse_address_list(" , ")


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MOCKSERVER_PORTS", "6000-6001")
    monkeypatch.setenv("MOCKSERVER_DEFAULT_TIMEOUT_MS", "250")

    settings = Settings()

    assert settings.port_list == [6000, 6001]
    assert settings.default_timeout_ms == 250
    assert settings.address_list == ["127.0.0.1"]
