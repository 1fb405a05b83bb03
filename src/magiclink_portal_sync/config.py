from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Union
from urllib.parse import urljoin, urlparse

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


DEFAULT_POSITIVE_MARKERS = ("my bookings", "upcoming", "past bookings", "reservation details")
DEFAULT_NEGATIVE_MARKERS = ("sign in", "log in", "enter your email")
DEFAULT_LOGIN_PATH_HINTS = ("/sign-in", "/signin", "/login", "/auth")

DEFAULT_SEARCH_PHRASES = (
    "my bookings",
    "bookings",
    "reservations",
    "my reservations",
    "upcoming",
    "past bookings",
)
DEFAULT_CONTENT_SELECTORS = (
    '[class*="booking"]',
    '[class*="reservation"]',
    '[class*="appointment"]',
    '[class*="event"]',
    '[id*="booking"]',
    '[id*="reservation"]',
    ".bookings",
    ".reservations",
    "#bookings",
    "#reservations",
)
DEFAULT_MAIN_CONTENT_SELECTORS = ("main", ".main", "#main", ".content", "#content", ".container")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _parse_list_env(value: str) -> list[str]:
    """
    Parse a list-valued env var. Accepts a JSON list (`["my bookings","upcoming"]`)
    or a comma-separated string. Phrases may contain spaces, so whitespace never splits.
    """
    s = (value or "").strip()
    if not s:
        return []

    if s.startswith("["):
        try:
            data = json.loads(s)
            if isinstance(data, list):
                items = [str(x) for x in data]
            else:
                items = [s]
        except Exception:
            logger.warning("List env value looks like JSON but does not parse; splitting on commas instead.")
            items = s.strip("[]").split(",")
    else:
        items = s.split(",")

    out: list[str] = []
    seen: set[str] = set()
    for item in items:
        token = (item or "").strip().strip('"').strip()
        if not token or token in seen:
            continue
        out.append(token)
        seen.add(token)
    return out


def _list_from_env(name: str) -> list[str] | None:
    # None means "not provided" so pydantic defaults apply.
    parsed = _parse_list_env(os.getenv(name, ""))
    return parsed or None


def _int_from_env(name: str) -> int | None:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _drop_none(value: object) -> object:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    return value


def _default_config_from_env() -> dict:
    """
    Env-only config so a `.env` file is enough for most deployments; YAML is an optional override.
    """
    return _drop_none(
        {
            "site": {
                "base_url": os.getenv("PORTAL_BASE_URL", ""),
                "protected_url": os.getenv("PORTAL_PROTECTED_URL") or None,
                "login_url": os.getenv("PORTAL_LOGIN_URL") or None,
                "login_fallback_urls": _list_from_env("PORTAL_LOGIN_FALLBACK_URLS"),
                "email": os.getenv("PORTAL_EMAIL", ""),
            },
            "auth": {
                "positive_markers": _list_from_env("AUTH_POSITIVE_MARKERS"),
                "negative_markers": _list_from_env("AUTH_NEGATIVE_MARKERS"),
                "magic_link_wait_seconds": _int_from_env("MAGIC_LINK_WAIT_SECONDS"),
                "magic_link_poll_seconds": _int_from_env("MAGIC_LINK_POLL_SECONDS"),
            },
            "extraction": {
                "search_phrases": _list_from_env("EXTRACTION_SEARCH_PHRASES"),
                "min_section_size": _int_from_env("EXTRACTION_MIN_SECTION_SIZE"),
                "min_main_content_size": _int_from_env("EXTRACTION_MIN_MAIN_CONTENT_SIZE"),
            },
            "navigation": {
                "timeout_ms": _int_from_env("NAVIGATION_TIMEOUT_MS"),
                "retries": _int_from_env("NAVIGATION_RETRIES"),
            },
            "browser": {
                "headless": _env_bool("BROWSER_HEADLESS", default=True),
            },
            "paths": {
                "session_file": os.getenv("SESSION_FILE", "data/cookies.json"),
                "magic_link_file": os.getenv("MAGIC_LINK_FILE", "data/login_url.txt"),
                "extraction_out": os.getenv("EXTRACTION_OUT", "data/extraction.json"),
                "records_out": os.getenv("RECORDS_OUT", "data/bookings.json"),
                "debug_dir": os.getenv("DEBUG_DIR", "data/debug"),
            },
            "logging": {
                "level": os.getenv("LOG_LEVEL", "INFO"),
                "file_path": os.getenv("LOG_FILE", "data/sync.log"),
            },
        }
    )


def _resolve_url(base_url: str, value: str, *, field: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValueError(f"site.{field} is required")
    if v.startswith("/"):
        v = urljoin(base_url + "/", v.lstrip("/"))
    parsed = urlparse(v)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"site.{field} must be a full URL or a path like '/account/bookings' (got {value!r})")
    return v


class SiteConfig(BaseModel):
    """
    The portal being automated.

    `protected_url` and `login_url` may be paths; they are resolved against `base_url`.
    """

    base_url: str
    protected_url: str = "/account/bookings"
    login_url: str = "/sign-in"
    # Tried in order when the primary login page shows no email input.
    login_fallback_urls: list[str] = Field(default_factory=list)
    email: str

    @model_validator(mode="after")
    def _normalize_urls(self) -> "SiteConfig":
        base_url = (self.base_url or "").strip().rstrip("/")
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("site.base_url must be a full URL like 'https://my.example.com'")

        email = (self.email or "").strip()
        if not _EMAIL_RE.match(email):
            raise ValueError("site.email must be the account's email address (PORTAL_EMAIL)")

        self.base_url = base_url
        self.email = email
        self.protected_url = _resolve_url(base_url, self.protected_url, field="protected_url")
        self.login_url = _resolve_url(base_url, self.login_url, field="login_url")
        self.login_fallback_urls = [
            _resolve_url(base_url, u, field="login_fallback_urls") for u in self.login_fallback_urls if (u or "").strip()
        ]
        return self


class AuthConfig(BaseModel):
    positive_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_POSITIVE_MARKERS))
    negative_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_NEGATIVE_MARKERS))
    login_path_hints: list[str] = Field(default_factory=lambda: list(DEFAULT_LOGIN_PATH_HINTS))

    settle_ms: int = 3_000
    # Client-rendered pages may show a stale login shell for a few seconds.
    render_wait_ms: int = 8_000

    email_input_attempts: int = 5
    email_input_interval_ms: int = 1_000
    submit_poll_attempts: int = 20
    submit_poll_interval_ms: int = 500

    magic_link_wait_seconds: int = 600
    magic_link_poll_seconds: int = 2

    @field_validator("positive_markers", "negative_markers")
    @classmethod
    def _lowercase_markers(cls, v: list[str]) -> list[str]:
        out = [m.strip().lower() for m in v if (m or "").strip()]
        if not out:
            raise ValueError("marker lists must not be empty")
        return out


class ExtractionConfig(BaseModel):
    """
    Ranked strategy inputs. Order matters: earlier entries win.
    """

    search_phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_SEARCH_PHRASES))
    content_selectors: list[str] = Field(default_factory=lambda: list(DEFAULT_CONTENT_SELECTORS))
    main_content_selectors: list[str] = Field(default_factory=lambda: list(DEFAULT_MAIN_CONTENT_SELECTORS))
    min_section_size: int = 100
    min_main_content_size: int = 1_000
    content_wait_ms: int = 20_000


class NavigationConfig(BaseModel):
    timeout_ms: int = 30_000
    retries: int = 2
    backoff_ms: int = 2_000

    @field_validator("retries")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("navigation.retries must be >= 1 (it is the total number of attempts)")
        return v


class BrowserConfig(BaseModel):
    headless: bool = True
    slow_mo_ms: int = 0
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1280
    viewport_height: int = 720


class PathsConfig(BaseModel):
    session_file: str = "data/cookies.json"
    magic_link_file: str = "data/login_url.txt"
    extraction_out: str = "data/extraction.json"
    records_out: str = "data/bookings.json"
    debug_dir: str = "data/debug"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/sync.log"


class AppConfig(BaseModel):
    site: SiteConfig
    auth: AuthConfig = AuthConfig()
    extraction: ExtractionConfig = ExtractionConfig()
    navigation: NavigationConfig = NavigationConfig()
    browser: BrowserConfig = BrowserConfig()
    paths: PathsConfig = PathsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path]) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
