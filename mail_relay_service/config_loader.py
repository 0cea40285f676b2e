# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Settings loader: INI file with environment variables as fallbacks."""

from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Mapping

from .logger import get_logger

logger = get_logger(__name__)


def load_settings(environ: Mapping[str, str] | None = None) -> dict[str, object]:
    """
    Load configuration from an INI file (default: config.ini) with environment variables as fallbacks.

    Environment variables (prefixed with MRS_ unless noted):
      MRS_CONFIG - Path to config.ini file (default: config.ini)
      MRS_HOST - Server host (default: 0.0.0.0)
      MRS_PORT - Server port (default: 3000)
      MRS_API_TOKEN - Optional API authentication token
      MRS_ENVIRONMENT - Deployment environment (default: development)
      MRS_MAX_BODY_BYTES - Request body ceiling in bytes (default: 10 MiB)
      MRS_CORS_ORIGINS - Comma separated list of allowed origins (default: *)
      MRS_SMTP_HOST - Relay host (default: smtp.gmail.com)
      MRS_SMTP_PORT - Relay submission port (default: 587)
      MRS_SENDER_NAME - Display name used in the From header (default: Email Service)
      MRS_SMTP_CONNECT_TIMEOUT - Relay handshake timeout in seconds (default: 15)
      MRS_SMTP_SEND_TIMEOUT - Per-send timeout in seconds (default: 30)
      MRS_RATE_LIMIT_WINDOW_SECONDS - Throttling window (default: 900)
      MRS_RATE_LIMIT_MAX_REQUESTS - Requests allowed per window and client (default: 100)
      MRS_LOG_LEVEL - Logging level (default: INFO)
      GMAIL_USER - Relay account (environment only)
      GMAIL_PASS - Relay secret (environment only)

    Config file sections/keys:
      [server] host, port, api_token, environment, max_body_bytes, cors_origins
      [smtp] host, port, sender_name, connect_timeout, send_timeout
      [rate_limit] window_seconds, max_requests
      [logging] level
    """
    env = os.environ if environ is None else environ
    config_path = Path(env.get("MRS_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    if config_path.exists():
        parser.read(config_path)
    else:
        logger.debug("Config file %s not found, using environment only", config_path)

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    def get_int(section: str, option: str, fallback: str | None = None, default: int | None = None) -> int | None:
        value = get(section, option, fallback)
        if value is None:
            return default
        return int(value)

    def get_float(section: str, option: str, fallback: str | None = None, default: float | None = None) -> float | None:
        value = get(section, option, fallback)
        if value is None:
            return default
        return float(value)

    settings = {
        "http_host": get("server", "host", env.get("MRS_HOST", "0.0.0.0")),
        "http_port": get_int("server", "port", env.get("MRS_PORT"), default=3000),
        "api_token": get("server", "api_token", env.get("MRS_API_TOKEN")),
        "environment": get("server", "environment", env.get("MRS_ENVIRONMENT", "development")),
        "max_body_bytes": get_int("server", "max_body_bytes", env.get("MRS_MAX_BODY_BYTES"), default=10 * 1024 * 1024),
        "cors_origins": get("server", "cors_origins", env.get("MRS_CORS_ORIGINS", "*")),
        "smtp_host": get("smtp", "host", env.get("MRS_SMTP_HOST", "smtp.gmail.com")),
        "smtp_port": get_int("smtp", "port", env.get("MRS_SMTP_PORT"), default=587),
        "smtp_user": env.get("GMAIL_USER"),
        "smtp_password": env.get("GMAIL_PASS"),
        "sender_name": get("smtp", "sender_name", env.get("MRS_SENDER_NAME", "Email Service")),
        "connect_timeout": get_float("smtp", "connect_timeout", env.get("MRS_SMTP_CONNECT_TIMEOUT"), default=15.0),
        "send_timeout": get_float("smtp", "send_timeout", env.get("MRS_SMTP_SEND_TIMEOUT"), default=30.0),
        "rate_limit_window_seconds": get_int(
            "rate_limit",
            "window_seconds",
            env.get("MRS_RATE_LIMIT_WINDOW_SECONDS"),
            default=15 * 60,
        ),
        "rate_limit_max_requests": get_int(
            "rate_limit",
            "max_requests",
            env.get("MRS_RATE_LIMIT_MAX_REQUESTS"),
            default=100,
        ),
        "log_level": get("logging", "level", env.get("MRS_LOG_LEVEL", "INFO")),
    }

    token = settings.get("api_token")
    if isinstance(token, str):
        token = token.strip() or None
    settings["api_token"] = token
    for key in ("smtp_user", "smtp_password"):
        value = settings[key]
        settings[key] = value.strip() if isinstance(value, str) and value.strip() else None
    origins = str(settings["cors_origins"] or "")
    settings["cors_origins"] = [origin.strip() for origin in origins.split(",") if origin.strip()]
    settings["environment"] = str(settings["environment"]).strip().lower()
    settings["diagnostics"] = settings["environment"] != "production"
    settings["log_level"] = str(settings["log_level"]).upper()
    return settings
