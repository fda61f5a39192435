import os
import re
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

DEFAULT_BACKEND_API = "http://localhost:4001"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; PriceTracker/1.0)"
DEFAULT_SCRAPE_PERIOD = 300.0
DEFAULT_GRACE_PERIOD = 5.0
DEFAULT_MAX_CONCURRENT = 10
DEFAULT_HTTP_TIMEOUT = 15.0

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Invalid or unparsable configuration; fatal at startup"""


def parse_duration(value: str) -> float:
    """
    Parse a duration into seconds.

    Accepts bare numbers (seconds) and unit strings such as
    "300ms", "15s", "5m" or "1h30m".
    """
    text = str(value).strip()
    if not text:
        raise ConfigError("empty duration")

    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ConfigError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ConfigError(f"invalid duration: {value!r}")
    return total


def parse_bool(value: str) -> bool:
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"invalid boolean: {value!r}")


class ScraperConfig(BaseModel):
    """Immutable runtime configuration, read once at startup"""

    model_config = ConfigDict(frozen=True)

    backend_api: str = Field(DEFAULT_BACKEND_API, description="Base URL of the backend API")
    scrape_period: float = Field(DEFAULT_SCRAPE_PERIOD, description="Seconds between cycle starts")
    cycle_deadline: Optional[float] = Field(None, description="Per-cycle time budget; defaults to scrape_period")
    grace_period: float = Field(DEFAULT_GRACE_PERIOD, description="Seconds in-flight items get after cancellation")
    max_concurrent: int = Field(DEFAULT_MAX_CONCURRENT, description="Maximum items processed at once")
    http_timeout: float = Field(DEFAULT_HTTP_TIMEOUT, description="Per-request network timeout")
    user_agent: str = DEFAULT_USER_AGENT
    item_fetch_retries: int = 0
    forward_failed_results: bool = False
    disable_scheduler: bool = False

    @field_validator("backend_api")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"backend_api must be an http(s) URL, got {v!r}")
        return v

    @field_validator("scrape_period", "http_timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("cycle_deadline")
    @classmethod
    def _positive_deadline(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("grace_period")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("max_concurrent")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("item_fetch_retries")
    @classmethod
    def _retries_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def _default_deadline(self) -> "ScraperConfig":
        if self.cycle_deadline is None:
            # frozen model: bypass __setattr__ for the derived default
            object.__setattr__(self, "cycle_deadline", self.scrape_period)
        return self

    def summary(self) -> dict:
        """Config values that are safe to expose on the status endpoint"""
        return {
            "backend_api": self.backend_api,
            "scrape_period_s": self.scrape_period,
            "cycle_deadline_s": self.cycle_deadline,
            "grace_period_s": self.grace_period,
            "max_concurrent": self.max_concurrent,
            "http_timeout_s": self.http_timeout,
            "item_fetch_retries": self.item_fetch_retries,
            "forward_failed_results": self.forward_failed_results,
        }


# env var -> (field, parser)
_ENV_FIELDS = {
    "BACKEND_API": ("backend_api", str),
    "SCRAPE_PERIOD": ("scrape_period", parse_duration),
    "CYCLE_DEADLINE": ("cycle_deadline", parse_duration),
    "CANCEL_GRACE_PERIOD": ("grace_period", parse_duration),
    "MAX_CONCURRENT": ("max_concurrent", int),
    "HTTP_TIMEOUT": ("http_timeout", parse_duration),
    "USER_AGENT": ("user_agent", str),
    "ITEM_FETCH_RETRIES": ("item_fetch_retries", int),
    "FORWARD_FAILED_RESULTS": ("forward_failed_results", parse_bool),
    "SCRAPER_DISABLE_SCHEDULER": ("disable_scheduler", parse_bool),
}


def load_config(environ: Optional[Mapping[str, str]] = None) -> ScraperConfig:
    """Build ScraperConfig from environment variables; raises ConfigError."""
    env = os.environ if environ is None else environ

    values = {}
    for var, (field_name, parser) in _ENV_FIELDS.items():
        raw = env.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            values[field_name] = parser(raw.strip())
        except (ConfigError, ValueError) as e:
            raise ConfigError(f"{var}={raw!r}: {e}") from e

    try:
        return ScraperConfig(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
