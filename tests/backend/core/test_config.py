from datetime import datetime, timedelta, timezone

import pytest

from backend.core import config
from backend.core.clock import as_naive_utc, utcnow


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [(None, False), ('true', True), (' YES ', True), ('1', True), ('off', False), ('nope', False)],
)
def test_get_bool(raw, expected) -> None:
    assert config._get_bool(raw) is expected


def test_get_int_falls_back_and_clamps() -> None:
    assert config._get_int(None, default=10) == 10
    assert config._get_int('not-a-number', default=10) == 10
    assert config._get_int('2', default=10, minimum=4) == 4
    assert config._get_int('99', default=10, maximum=16) == 16
    assert config._get_int('12', default=10, minimum=4, maximum=16) == 12


def test_production_requires_a_real_jwt_secret(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'change-me')

    with pytest.raises(RuntimeError):
        config.validate_runtime_config()

    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'a-real-secret')
    config.validate_runtime_config()


def test_utcnow_is_naive() -> None:
    assert utcnow().tzinfo is None


def test_as_naive_utc_converts_aware_values() -> None:
    aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    naive = datetime(2024, 5, 1, 12, 0)

    assert as_naive_utc(aware) == datetime(2024, 5, 1, 10, 0)
    assert as_naive_utc(naive) is naive
    assert as_naive_utc(None) is None
