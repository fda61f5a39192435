import pytest
from pydantic import ValidationError

from app.config import ConfigError, ScraperConfig, load_config, parse_bool, parse_duration


@pytest.mark.parametrize("raw,expected", [
    ("300", 300.0),
    ("1.5", 1.5),
    ("15s", 15.0),
    ("5m", 300.0),
    ("1h30m", 5400.0),
    ("250ms", 0.25),
    ("1m30.5s", 90.5),
])
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", "five minutes", "5x", "m5", "5m junk"])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ConfigError):
        parse_duration(raw)


def test_parse_bool():
    assert parse_bool("true") is True
    assert parse_bool("ON") is True
    assert parse_bool("0") is False
    with pytest.raises(ConfigError):
        parse_bool("maybe")


def test_defaults_with_empty_environment():
    config = load_config({})

    assert config.backend_api == "http://localhost:4001"
    assert config.scrape_period == 300.0
    assert config.cycle_deadline == 300.0
    assert config.max_concurrent == 10
    assert config.http_timeout == 15.0
    assert config.user_agent == "Mozilla/5.0 (compatible; PriceTracker/1.0)"
    assert config.forward_failed_results is False


def test_environment_overrides():
    config = load_config({
        "BACKEND_API": "https://api.example.com/",
        "SCRAPE_PERIOD": "10m",
        "CYCLE_DEADLINE": "8m",
        "CANCEL_GRACE_PERIOD": "2s",
        "MAX_CONCURRENT": "4",
        "HTTP_TIMEOUT": "5s",
        "ITEM_FETCH_RETRIES": "2",
        "FORWARD_FAILED_RESULTS": "true",
        "SCRAPER_DISABLE_SCHEDULER": "yes",
    })

    assert config.backend_api == "https://api.example.com"
    assert config.scrape_period == 600.0
    assert config.cycle_deadline == 480.0
    assert config.grace_period == 2.0
    assert config.max_concurrent == 4
    assert config.http_timeout == 5.0
    assert config.item_fetch_retries == 2
    assert config.forward_failed_results is True
    assert config.disable_scheduler is True


def test_deadline_defaults_to_period():
    config = load_config({"SCRAPE_PERIOD": "90s"})
    assert config.cycle_deadline == 90.0


@pytest.mark.parametrize("value", ["0", "-3"])
def test_invalid_concurrency_limit_is_fatal(value):
    with pytest.raises(ConfigError):
        load_config({"MAX_CONCURRENT": value})


@pytest.mark.parametrize("env", [
    {"MAX_CONCURRENT": "ten"},
    {"SCRAPE_PERIOD": "soon"},
    {"HTTP_TIMEOUT": "0s"},
    {"BACKEND_API": "localhost:4001"},
    {"FORWARD_FAILED_RESULTS": "sometimes"},
])
def test_unparsable_values_are_fatal(env):
    with pytest.raises(ConfigError):
        load_config(env)


def test_config_is_immutable():
    config = ScraperConfig()
    with pytest.raises(ValidationError):
        config.max_concurrent = 99
