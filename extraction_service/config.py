"""Environment-variable-driven configuration for the HTTP surface.

Pipeline settings (OCR backends, staging, polling) live in
``extraction_service.pipeline.config.ExtractionConfig``.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Requests -----------------------------------------------------------------
# base64 of a 20 MB upload plus JSON envelope
EXTRACT_MAX_BODY_BYTES: int = int(os.getenv("EXTRACT_MAX_BODY_BYTES", str(28 * 1024 * 1024)))
EXTRACT_REQUEST_TIMEOUT_S: float = float(os.getenv("EXTRACT_REQUEST_TIMEOUT_S", "900"))
EXTRACT_RATE_LIMIT: str = os.getenv("EXTRACT_RATE_LIMIT", "10/minute")
EXTRACT_DEFAULT_LANGUAGE: str = os.getenv("EXTRACT_OCR_LANGUAGE", "eng")

# Local file paths are only honoured under this root (empty = disabled)
EXTRACT_LOCAL_FILE_ROOT: str = os.getenv("EXTRACT_LOCAL_FILE_ROOT", "")

# -- CORS ---------------------------------------------------------------------
EXTRACT_CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "EXTRACT_CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
EXTRACT_CORS_ALLOW_METHODS: list[str] = _env_csv("EXTRACT_CORS_ALLOW_METHODS", "GET,POST,OPTIONS")
EXTRACT_CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "EXTRACT_CORS_ALLOW_HEADERS",
    "Authorization,Content-Type",
)
EXTRACT_CORS_ALLOW_CREDENTIALS: bool = _env_bool("EXTRACT_CORS_ALLOW_CREDENTIALS", False)
