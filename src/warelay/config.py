"""Runtime configuration loader for warelay.

Loads config.json once, resolves secret references from environment
variables, and exposes typed dataclasses via get_config().

Secret Resolution
-----------------
Values in config.json that look like ``UPPER_SNAKE_CASE`` strings
(e.g. ``"WEBHOOK_URL"``) are treated as env-var references and
resolved from ``os.environ``.

When config.json is missing, the built-in defaults below are used; they
reference the same environment variables (``PORT``, ``WEBHOOK_URL``,
``CLOUDINARY_*``, ``FIREBASE_*``), so a plain ``.env`` is enough to run.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from warelay.constants import (
    CONFIG_FILENAME,
    DEFAULT_BRIDGE_TIMEOUT,
    DEFAULT_BRIDGE_URL,
    DEFAULT_HOST,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PORT,
    DEFAULT_SESSION_LABEL,
    TOKEN_URI,
)

# Pattern to detect env-var-style values: UPPER_SNAKE_CASE with optional digits
_ENV_VAR_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{2,}$")

_DEFAULT_RAW: dict[str, Any] = {
    "server": {"host": DEFAULT_HOST, "port": "PORT"},
    "relay": {"webhook_url": "WEBHOOK_URL"},
    "cloudinary": {
        "cloud_name": "CLOUDINARY_CLOUD_NAME",
        "api_key": "CLOUDINARY_API_KEY",
        "api_secret": "CLOUDINARY_API_SECRET",
    },
    "service_account": {
        "project_id": "FIREBASE_PROJECT_ID",
        "private_key_id": "FIREBASE_PRIVATE_KEY_ID",
        "private_key": "FIREBASE_PRIVATE_KEY",
        "client_email": "FIREBASE_CLIENT_EMAIL",
    },
    "sessions": {DEFAULT_SESSION_LABEL: {"enabled": True}},
}


# ──────────────────────────────────────────────────────────────────────
# Secret Resolution
# ──────────────────────────────────────────────────────────────────────


def resolve_secret(value: str) -> str | None:
    """Resolve a potential secret reference.

    If ``value`` looks like an env-var name (UPPER_SNAKE_CASE),
    resolve it from os.environ.

    Returns:
        The resolved secret string, or None if not found.
    """
    if not isinstance(value, str) or not value:
        return value

    if _ENV_VAR_PATTERN.match(value):
        resolved = os.environ.get(value)
        if resolved is None:
            logger.warning(
                f"Secret reference '{value}' not found in environment. "
                f"Set it in .env or export it."
            )
        return resolved

    # Literal value (not an env-var reference)
    return value


def _resolve_int(value: Any, default: int) -> int:
    """Resolve an int that may be given literally or as an env-var reference."""
    resolved = resolve_secret(value) if isinstance(value, str) else value
    if resolved in (None, ""):
        return default
    try:
        return int(resolved)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer config value {resolved!r}, using {default}")
        return default


# ──────────────────────────────────────────────────────────────────────
# Config Dataclasses
# ──────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ServerConfig:
    """HTTP surface settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL


@dataclass(frozen=True)
class RelayConfig:
    """Webhook target and outbound timeouts."""

    webhook_url: str | None = None  # Already resolved from env
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    bridge_timeout: float = DEFAULT_BRIDGE_TIMEOUT


@dataclass(frozen=True)
class CloudinaryConfig:
    """Credentials for the media host."""

    cloud_name: str | None = None
    api_key: str | None = None
    api_secret: str | None = None


@dataclass(frozen=True)
class ServiceAccountConfig:
    """Service account used to mint webhook access tokens."""

    project_id: str | None = None
    private_key_id: str | None = None
    private_key: str | None = None
    client_email: str | None = None
    token_uri: str = TOKEN_URI

    @property
    def signing_key(self) -> str:
        """The PEM private key with escaped newlines restored."""
        return (self.private_key or "").replace("\\n", "\n")


@dataclass(frozen=True)
class SessionConfig:
    """Configuration for a single chat account session."""

    label: str
    bridge_url: str = DEFAULT_BRIDGE_URL
    enabled: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Root config object holding all resolved configuration."""

    server: ServerConfig
    relay: RelayConfig
    cloudinary: CloudinaryConfig
    service_account: ServiceAccountConfig
    sessions: dict[str, SessionConfig]

    def get_session(self, label: str) -> SessionConfig | None:
        """Get a session config by label, or None if not found."""
        return self.sessions.get(label)

    def get_enabled_sessions(self) -> dict[str, SessionConfig]:
        """Return only enabled sessions."""
        return {k: v for k, v in self.sessions.items() if v.enabled}


# ──────────────────────────────────────────────────────────────────────
# Config Loading
# ──────────────────────────────────────────────────────────────────────

_config: AppConfig | None = None


def _find_project_root() -> Path | None:
    """Walk up from the cwd and this file to find the project root (where configs/ lives)."""
    for start in (Path.cwd(), Path(__file__).resolve().parent):
        current = start
        for _ in range(10):  # safety limit
            if (current / "configs").is_dir():
                return current
            parent = current.parent
            if parent == current:
                break
            current = parent
    return None


def _load_raw_config() -> dict[str, Any]:
    """Load and return the raw config.json dict, or the built-in defaults."""
    root = _find_project_root()
    config_path = root / CONFIG_FILENAME if root else None

    if config_path is None or not config_path.exists():
        logger.info("No config.json found, using environment defaults")
        return _DEFAULT_RAW

    with open(config_path, encoding="utf-8") as f:
        data = json.load(f)

    logger.info(f"Loaded config from {config_path}")
    return data


def _parse_config(raw: dict[str, Any]) -> AppConfig:
    """Parse raw config dict into typed AppConfig."""

    # --- Server ---
    server_raw = raw.get("server", {})
    server = ServerConfig(
        host=server_raw.get("host", DEFAULT_HOST),
        port=_resolve_int(server_raw.get("port", DEFAULT_PORT), DEFAULT_PORT),
        log_level=server_raw.get("log_level", DEFAULT_LOG_LEVEL),
    )

    # --- Relay ---
    relay_raw = raw.get("relay", {})
    relay = RelayConfig(
        webhook_url=resolve_secret(relay_raw.get("webhook_url", "")) or None,
        http_timeout=float(relay_raw.get("http_timeout", DEFAULT_HTTP_TIMEOUT)),
        bridge_timeout=float(relay_raw.get("bridge_timeout", DEFAULT_BRIDGE_TIMEOUT)),
    )

    # --- Media host ---
    cld_raw = raw.get("cloudinary", {})
    cloudinary = CloudinaryConfig(
        cloud_name=resolve_secret(cld_raw.get("cloud_name", "")) or None,
        api_key=resolve_secret(cld_raw.get("api_key", "")) or None,
        api_secret=resolve_secret(cld_raw.get("api_secret", "")) or None,
    )

    # --- Service account ---
    sa_raw = raw.get("service_account", {})
    service_account = ServiceAccountConfig(
        project_id=resolve_secret(sa_raw.get("project_id", "")) or None,
        private_key_id=resolve_secret(sa_raw.get("private_key_id", "")) or None,
        private_key=resolve_secret(sa_raw.get("private_key", "")) or None,
        client_email=resolve_secret(sa_raw.get("client_email", "")) or None,
        token_uri=sa_raw.get("token_uri", TOKEN_URI),
    )

    # --- Sessions ---
    sessions: dict[str, SessionConfig] = {}
    for label, sess_raw in raw.get("sessions", {}).items():
        sessions[label] = SessionConfig(
            label=label,
            bridge_url=resolve_secret(sess_raw.get("bridge_url", DEFAULT_BRIDGE_URL))
            or DEFAULT_BRIDGE_URL,
            enabled=sess_raw.get("enabled", True),
            extra={
                k: v for k, v in sess_raw.items()
                if k not in {"bridge_url", "enabled"}
            },
        )

    return AppConfig(
        server=server,
        relay=relay,
        cloudinary=cloudinary,
        service_account=service_account,
        sessions=sessions,
    )


def get_config(*, reload: bool = False) -> AppConfig:
    """Return the singleton AppConfig, loading it on first call.

    Args:
        reload: Force re-read from disk (useful for testing).
    """
    global _config

    if _config is None or reload:
        from dotenv import load_dotenv

        load_dotenv()  # populate os.environ from .env

        raw = _load_raw_config()
        _config = _parse_config(raw)
        logger.debug(f"Config loaded: {len(_config.sessions)} sessions")

    return _config
