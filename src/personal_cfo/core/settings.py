import os

from dotenv import find_dotenv, load_dotenv

from personal_cfo.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_POLL_MAX_ERRORS = 3
DEFAULT_EXCHANGE_RATE_TIMEOUT_SECONDS = 4.0
DEFAULT_EXCHANGE_RATE_CACHE_TTL_SECONDS = 24 * 60 * 60.0
DEFAULT_CURRENCY = "PEN"
DEFAULT_BYPASS_PREFIX = "/transactions"
DEFAULT_QUERY_STALE_TIME_SECONDS = 30.0
DEFAULT_MAX_SESSIONS = 1000

_CONFIG_FILE_VALUES: dict[str, str] = {}
_EXTERNAL_ENV_KEYS: set[str] = set()

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "API_URL",
    "NEXT_PUBLIC_API_URL",
    "APP_ENV",
    "DEV_AUTH_BYPASS_PREFIX",
    "STATEMENT_POLL_INTERVAL",
    "STATEMENT_POLL_MAX_ERRORS",
    "EXCHANGE_RATE_API_KEY",
    "EXCHANGE_RATE_TIMEOUT",
    "EXCHANGE_RATE_CACHE_TTL",
    "DEFAULT_CURRENCY",
    "QUERY_STALE_TIME",
    "MAX_SESSIONS",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    candidate = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(cwd, CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    quote: str | None = None
    for index, char in enumerate(raw_value):
        if char in {'"', "'"}:
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
            continue
        if char == "#" and quote is None:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) >= 2 and raw_value[0] == raw_value[-1] and raw_value[0] in {'"', "'"}:
        return raw_value[1:-1]
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read a flat ``key: value`` config file. Nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            cleaned = _strip_inline_comment(raw_value).strip()
            if not key or not cleaned:
                continue
            value = _unquote_value(cleaned)
            if value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_VALUES
    global _EXTERNAL_ENV_KEYS

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _EXTERNAL_ENV_KEYS = set(os.environ.keys())

    config_path = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(config_path)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def is_env_override(name: str) -> bool:
    return name in _EXTERNAL_ENV_KEYS


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %.2f.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %.2f.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_api_url() -> str:
    raw = os.getenv("API_URL") or os.getenv("NEXT_PUBLIC_API_URL") or DEFAULT_API_URL
    return raw.rstrip("/")


def is_development() -> bool:
    return os.getenv("APP_ENV", "production").strip().lower() == "development"


def get_bypass_prefix() -> str:
    return os.getenv("DEV_AUTH_BYPASS_PREFIX") or DEFAULT_BYPASS_PREFIX


def get_default_currency() -> str:
    return (os.getenv("DEFAULT_CURRENCY") or DEFAULT_CURRENCY).upper()


def get_data_dir() -> str:
    return os.getenv("DATA_DIR", ".")


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
    "AUTH",
    "BEARER",
)

_ENV_KEYS_TO_LOG = (
    "LOG_LEVEL",
    "API_URL",
    "NEXT_PUBLIC_API_URL",
    "APP_ENV",
    "DEV_AUTH_BYPASS_PREFIX",
    "STATEMENT_POLL_INTERVAL",
    "STATEMENT_POLL_MAX_ERRORS",
    "EXCHANGE_RATE_API_KEY",
    "EXCHANGE_RATE_TIMEOUT",
    "EXCHANGE_RATE_CACHE_TTL",
    "DEFAULT_CURRENCY",
    "QUERY_STALE_TIME",
    "MAX_SESSIONS",
    "DATA_DIR",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    if value.lower().startswith("bearer "):
        return True
    return value.startswith("eyJ") and value.count(".") == 2


def mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _ENV_KEYS_TO_LOG:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


load_environment()

ensure_dir(get_data_dir())
ensure_dir(os.getenv("LOG_DIR"))

POLL_INTERVAL_SECONDS = get_env_float(
    "STATEMENT_POLL_INTERVAL",
    DEFAULT_POLL_INTERVAL_SECONDS,
    min_value=0.1,
)
POLL_MAX_ERRORS = get_env_int("STATEMENT_POLL_MAX_ERRORS", DEFAULT_POLL_MAX_ERRORS, min_value=1)
EXCHANGE_RATE_TIMEOUT_SECONDS = get_env_float(
    "EXCHANGE_RATE_TIMEOUT",
    DEFAULT_EXCHANGE_RATE_TIMEOUT_SECONDS,
    min_value=0.1,
)
EXCHANGE_RATE_CACHE_TTL_SECONDS = get_env_float(
    "EXCHANGE_RATE_CACHE_TTL",
    DEFAULT_EXCHANGE_RATE_CACHE_TTL_SECONDS,
    min_value=0.0,
)
QUERY_STALE_TIME_SECONDS = get_env_float(
    "QUERY_STALE_TIME",
    DEFAULT_QUERY_STALE_TIME_SECONDS,
    min_value=0.0,
)
MAX_SESSIONS = get_env_int("MAX_SESSIONS", DEFAULT_MAX_SESSIONS, min_value=1)
