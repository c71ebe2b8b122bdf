#!/usr/bin/env python3
"""
Configuration Management for the Caption Ingestion Pipeline

This module provides centralized configuration for the backend client,
caption fetching, identity hashing and session storage. It loads settings
from environment variables with sensible defaults and provides validation.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, FrozenSet

from logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_TOKEN_FILE = os.path.join("~", ".ytvotes", "token.json")


@dataclass
class IngestConfig:
    """Configuration for the ingestion core and its boundaries."""

    # Backend
    backend_base_url: str = "http://localhost:3000"
    backend_timeout: int = 20
    backend_connect_retries: int = 2

    # Caption fetching
    preferred_caption_lang: str = "en"
    caption_fetch_timeout: int = 15
    rate_limit_statuses: FrozenSet[int] = field(default_factory=lambda: frozenset({429}))

    # Identity
    content_hash_prefix_len: int = 16

    # Display
    summary_limit: int = 50
    snippet_window_sec: int = 5

    # Storage
    session_db_path: str = ""
    token_file: str = DEFAULT_TOKEN_FILE

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> 'IngestConfig':
        """Load configuration from environment variables with validation."""
        try:
            config = cls(
                backend_base_url=os.getenv("BACKEND_BASE_URL", cls.backend_base_url).rstrip("/"),
                backend_timeout=cls._parse_int_env("BACKEND_TIMEOUT", 20, min_val=5, max_val=120),
                backend_connect_retries=cls._parse_int_env("BACKEND_CONNECT_RETRIES", 2, min_val=0, max_val=5),

                preferred_caption_lang=os.getenv("PREFERRED_CAPTION_LANG", "en").strip() or "en",
                caption_fetch_timeout=cls._parse_int_env("CAPTION_FETCH_TIMEOUT", 15, min_val=5, max_val=60),
                rate_limit_statuses=cls._parse_status_set_env("RATE_LIMIT_STATUSES", frozenset({429})),

                content_hash_prefix_len=cls._parse_int_env("CONTENT_HASH_PREFIX_LEN", 16, min_val=8, max_val=64),

                summary_limit=cls._parse_int_env("SUMMARY_LIMIT", 50, min_val=1, max_val=500),
                snippet_window_sec=cls._parse_int_env("SNIPPET_WINDOW_SEC", 5, min_val=2, max_val=30),

                session_db_path=os.getenv("SESSION_DB_PATH", "").strip(),
                token_file=os.getenv("TOKEN_FILE", DEFAULT_TOKEN_FILE).strip() or DEFAULT_TOKEN_FILE,

                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                log_json=cls._parse_bool_env("LOG_JSON", True),
            )

            config.validate()
            return config

        except Exception as e:
            logger.error(f"Failed to load ingestion configuration: {e}")
            logger.warning("Using default ingestion configuration")
            return cls()

    @staticmethod
    def _parse_bool_env(env_var: str, default: bool) -> bool:
        """Parse boolean environment variable with validation."""
        value = os.getenv(env_var, str(default).lower())
        return value.lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_int_env(env_var: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
        """Parse integer environment variable, clamping to [min_val, max_val]."""
        try:
            value = int(os.getenv(env_var, str(default)))

            if min_val is not None and value < min_val:
                logger.warning(f"{env_var}={value} is below minimum {min_val}, using {min_val}")
                return min_val

            if max_val is not None and value > max_val:
                logger.warning(f"{env_var}={value} is above maximum {max_val}, using {max_val}")
                return max_val

            return value

        except (ValueError, TypeError):
            logger.error(f"Invalid value for {env_var}: {os.getenv(env_var)}, using default {default}")
            return default

    @staticmethod
    def _parse_status_set_env(env_var: str, default: FrozenSet[int]) -> FrozenSet[int]:
        """Parse a comma separated list of HTTP status codes."""
        raw = os.getenv(env_var)
        if raw is None:
            return default
        codes = set()
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            try:
                code = int(part)
            except ValueError:
                logger.error(f"Invalid status code '{part}' in {env_var}, ignoring")
                continue
            if 100 <= code <= 599:
                codes.add(code)
            else:
                logger.error(f"Status code {code} in {env_var} out of range, ignoring")
        return frozenset(codes)

    def validate(self) -> None:
        """Log warnings for problematic combinations."""
        warnings = []

        if not self.rate_limit_statuses:
            warnings.append("RATE_LIMIT_STATUSES is empty - rate limiting will never trigger backoff")

        if self.caption_fetch_timeout > self.backend_timeout:
            warnings.append(
                f"Caption fetch timeout ({self.caption_fetch_timeout}s) exceeds backend timeout ({self.backend_timeout}s)"
            )

        if not self.backend_base_url.startswith(("http://", "https://")):
            warnings.append(f"BACKEND_BASE_URL '{self.backend_base_url}' has no http(s) scheme")

        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "backend": {
                "base_url": self.backend_base_url,
                "timeout": self.backend_timeout,
                "connect_retries": self.backend_connect_retries,
            },
            "captions": {
                "preferred_lang": self.preferred_caption_lang,
                "fetch_timeout": self.caption_fetch_timeout,
                "rate_limit_statuses": sorted(self.rate_limit_statuses),
            },
            "identity": {
                "hash_prefix_len": self.content_hash_prefix_len,
            },
            "display": {
                "summary_limit": self.summary_limit,
                "snippet_window_sec": self.snippet_window_sec,
            },
            "storage": {
                "session_db_path": self.session_db_path or None,
                "token_file": self.token_file,
            },
            "logging": {
                "level": self.log_level,
                "json": self.log_json,
            },
        }


# Global configuration instance
_ingest_config: Optional[IngestConfig] = None


def get_ingest_config() -> IngestConfig:
    """Get the global ingestion configuration instance."""
    global _ingest_config
    if _ingest_config is None:
        _ingest_config = IngestConfig.from_env()
    return _ingest_config


def reload_ingest_config() -> IngestConfig:
    """Reload configuration from environment variables."""
    global _ingest_config
    _ingest_config = IngestConfig.from_env()
    return _ingest_config
