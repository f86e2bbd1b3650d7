import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# 프로젝트 루트 디렉토리 (specwiki/configuration/settings.py -> ../../)
PROJECT_ROOT = Path(__file__).parent.parent.parent

_SECURE_STORE_BACKENDS = ("keyring", "memory")


def _load_env() -> None:
    app_env = os.getenv("APP_ENV", "local")
    env_file = PROJECT_ROOT / f".env.{app_env}"
    load_dotenv(env_file)


def _resolve_path(value: str) -> str:
    """상대 경로는 프로젝트 루트 기준으로 해석합니다."""
    path = Path(value)
    return str(path if path.is_absolute() else PROJECT_ROOT / path)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"환경 변수 {name}는 정수여야 합니다: '{raw}'")


@dataclass(frozen=True)
class Settings:
    app_env: str
    server_name: str
    wiki_config_path: str
    prompt_template_path: str
    secure_store_backend: str  # keyring | memory
    keyring_service: str
    http_timeout_seconds: int
    link_cache_ttl_minutes: int
    link_cache_max_entries: int
    link_max_concurrent_requests: int
    log_dir: str


def build_settings() -> Settings:
    _load_env()

    required_vars = ("APP_ENV", "SERVER_NAME")
    missing = [k for k in required_vars if not os.getenv(k)]
    if missing:
        raise RuntimeError(f"필수 환경 변수 누락: {', '.join(missing)}")

    backend = os.getenv("SECURE_STORE_BACKEND", "keyring").strip().lower()
    if backend not in _SECURE_STORE_BACKENDS:
        raise RuntimeError(
            f"지원하지 않는 SECURE_STORE_BACKEND: '{backend}'. 사용 가능: {list(_SECURE_STORE_BACKENDS)}"
        )

    return Settings(
        app_env=os.environ["APP_ENV"],
        server_name=os.environ["SERVER_NAME"],
        wiki_config_path=_resolve_path(os.getenv("WIKI_CONFIG_PATH", "config/wiki_connection.json")),
        prompt_template_path=_resolve_path(os.getenv("PROMPT_TEMPLATE_PATH", "config/prompt_templates.yaml")),
        secure_store_backend=backend,
        keyring_service=os.getenv("KEYRING_SERVICE", "specwiki"),
        http_timeout_seconds=_int_env("HTTP_TIMEOUT_SECONDS", 30),
        link_cache_ttl_minutes=_int_env("LINK_CACHE_TTL_MINUTES", 30),
        link_cache_max_entries=_int_env("LINK_CACHE_MAX_ENTRIES", 100),
        link_max_concurrent_requests=_int_env("LINK_MAX_CONCURRENT_REQUESTS", 3),
        log_dir=_resolve_path(os.getenv("LOG_DIR", "logs")),
    )
