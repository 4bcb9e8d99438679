import pytest

from supplier_pricing.config.settings import Settings


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv('SUPPLIER_PRICING_DATA_DIR', raising=False)
    settings = Settings.load(project_root=tmp_path)
    assert settings.data_dir == tmp_path / 'data'
    assert settings.max_cache_age_hours == 24.0
    assert settings.live_timeout_seconds == 10.0
    assert settings.health_log_window == 10
    assert settings.tiers_csv is None


def test_env_overrides_and_csv_discovery(tmp_path, monkeypatch):
    (tmp_path / 'tiers.csv').write_text("tier,label\nstandard,Standard\n")
    monkeypatch.setenv('SUPPLIER_PRICING_DATA_DIR', str(tmp_path))
    monkeypatch.setenv('SUPPLIER_PRICING_LIVE_TIMEOUT', '2.5')
    monkeypatch.setenv('SUPPLIER_PRICING_MAX_PARALLEL', '3')

    settings = Settings.load(project_root=tmp_path)
    assert settings.live_timeout_seconds == 2.5
    assert settings.max_parallel_lookups == 3
    assert settings.tiers_csv == tmp_path / 'tiers.csv'
    assert settings.volume_brackets_csv is None


@pytest.mark.parametrize("name, value", [
    ('SUPPLIER_PRICING_LIVE_TIMEOUT', 'soon'),
    ('SUPPLIER_PRICING_LIVE_TIMEOUT', '0'),
    ('SUPPLIER_PRICING_HEALTH_WINDOW', '-1'),
])
def test_invalid_env_values_are_rejected(tmp_path, monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Settings.load(project_root=tmp_path)
