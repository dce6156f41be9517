"""
eBay Trading API and exporter configuration
"""
import os
from datetime import datetime
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from listings_exporter.exceptions import ConfigurationError

# Load .env from the working directory
load_dotenv()

# eBay API Endpoints
EBAY_API_ENDPOINT = "https://api.ebay.com/ws/api.dll"
EBAY_SANDBOX_ENDPOINT = "https://api.sandbox.ebay.com/ws/api.dll"

# API Configuration
EBAY_API_VERSION = "1291"
EBAY_COMPATIBILITY_LEVEL = EBAY_API_VERSION
EBAY_NAMESPACE = "urn:ebay:apis:eBLBaseComponents"
EBAY_SITE_ID = "0"  # US
REQUEST_ENCODINGS = ("XML", "JSON")

# Rate limiting (Trading API allows 5000 calls per day)
REQUESTS_PER_SECOND = 2
RATE_LIMIT_WINDOW_SECONDS = 1.0
RATE_LIMIT_POLL_INTERVAL = 0.1
REQUEST_TIMEOUT_SECONDS = 60

# Pagination
MAX_ENTRIES_PER_PAGE = 200
DEFAULT_ENTRIES_PER_PAGE = 100
INTER_PAGE_DELAY = 0.5
SELLER_LIST_PAGE_DELAY = 0.3

# Historical search (GetSellerList only accepts windows up to 120 days)
HISTORY_WINDOW_DAYS = 120
HISTORY_MAX_WINDOWS = 50
HISTORY_MIN_WINDOWS = 3
HISTORY_WINDOW_DELAY = 1.0
HISTORY_FALLBACK_THRESHOLD = 10

# Listing categories of GetMyeBaySelling
ACTIVE_LIST = "ActiveList"

# Required environment variables (any one name per entry)
REQUIRED_ENV: Dict[str, tuple] = {
    "EBAY_ACCESS_TOKEN": ("EBAY_ACCESS_TOKEN",),
    "EBAY_CLIENT_ID": ("EBAY_CLIENT_ID", "EBAY_APP_ID"),
}


def get_api_endpoint(environment: str = "sandbox") -> str:
    return EBAY_API_ENDPOINT if environment == "production" else EBAY_SANDBOX_ENDPOINT


def default_output_file(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"ebay_all_listings_{int(now.timestamp() * 1000)}.xlsx"


class ExportSettings(BaseModel):
    """Runtime settings for one export run"""
    access_token: str
    app_id: str
    site_id: str = EBAY_SITE_ID
    environment: str = "sandbox"
    request_encoding: str = "XML"
    requests_per_second: int = Field(default=REQUESTS_PER_SECOND, ge=1)
    inter_page_delay: float = Field(default=INTER_PAGE_DELAY, ge=0)
    request_timeout: float = Field(default=REQUEST_TIMEOUT_SECONDS, gt=0)
    output_file: str = Field(default_factory=default_output_file)
    log_level: str = "INFO"

    @property
    def endpoint(self) -> str:
        return get_api_endpoint(self.environment)


def _first_set(env: Mapping[str, str], names: tuple) -> str:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return ""


def load_settings(env: Optional[Mapping[str, str]] = None) -> ExportSettings:
    """
    Build ExportSettings from environment variables.

    Args:
        env: Mapping to read from (defaults to os.environ)

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    env = os.environ if env is None else env

    missing = [key for key, names in REQUIRED_ENV.items() if not _first_set(env, names)]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    environment = (env.get("EBAY_ENVIRONMENT") or "sandbox").strip().lower()
    if environment not in ("sandbox", "production"):
        raise ConfigurationError(f"EBAY_ENVIRONMENT must be 'sandbox' or 'production', got '{environment}'")

    encoding = (env.get("EBAY_REQUEST_ENCODING") or "XML").strip().upper()
    if encoding not in REQUEST_ENCODINGS:
        raise ConfigurationError(f"EBAY_REQUEST_ENCODING must be one of {REQUEST_ENCODINGS}, got '{encoding}'")

    values = {
        "access_token": _first_set(env, REQUIRED_ENV["EBAY_ACCESS_TOKEN"]),
        "app_id": _first_set(env, REQUIRED_ENV["EBAY_CLIENT_ID"]),
        "site_id": (env.get("EBAY_SITE_ID") or EBAY_SITE_ID).strip(),
        "environment": environment,
        "request_encoding": encoding,
        "log_level": (env.get("LOG_LEVEL") or "INFO").strip().upper(),
    }

    numeric = {
        "requests_per_second": ("EBAY_REQUESTS_PER_SECOND", int),
        "inter_page_delay": ("EBAY_INTER_PAGE_DELAY", float),
        "request_timeout": ("EBAY_REQUEST_TIMEOUT", float),
    }
    for field, (name, cast) in numeric.items():
        raw = (env.get(name) or "").strip()
        if not raw:
            continue
        try:
            values[field] = cast(raw)
        except ValueError as e:
            raise ConfigurationError(f"{name} must be a number, got '{raw}'") from e

    output_file = (env.get("OUTPUT_FILE") or "").strip()
    if output_file:
        values["output_file"] = output_file

    try:
        return ExportSettings(**values)
    except ValueError as e:
        raise ConfigurationError(f"Invalid exporter settings: {e}") from e
