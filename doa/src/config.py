"""Runtime configuration for the DOA service."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

_DEFAULT_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]


@dataclass
class DoaConfig:
    """Settings for storage, HTTP binding, CORS, and logging.

    Attributes:
        db_path: SQLite database file, or ':memory:'.
        host: Bind address.
        port: Port number.
        cors_origins: Origins allowed by the CORS middleware.
        admin_seed_email: Users created with this email become admins.
        log_level: Root logging level name.
    """

    db_path: str | Path = Path("data/doa/doa.db")
    host: str = "127.0.0.1"
    port: int = 8430
    cors_origins: list[str] = field(default_factory=lambda: list(_DEFAULT_ORIGINS))
    admin_seed_email: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DoaConfig:
        """Build a config from ``DOA_*`` environment variables.

        Args:
            environ: Mapping to read instead of os.environ (for tests).

        Returns:
            Config with defaults for unset variables.

        Raises:
            ValueError: If DOA_PORT is not a positive integer.
        """
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("DOA_DB_PATH"):
            config.db_path = env["DOA_DB_PATH"]
        if env.get("DOA_HOST"):
            config.host = env["DOA_HOST"]
        if env.get("DOA_PORT"):
            raw = env["DOA_PORT"]
            try:
                port = int(raw)
            except ValueError as exc:
                raise ValueError(f"DOA_PORT must be an integer, got {raw!r}") from exc
            if port <= 0:
                raise ValueError(f"DOA_PORT must be positive, got {port}")
            config.port = port
        if env.get("DOA_CORS_ORIGINS"):
            config.cors_origins = [
                origin.strip()
                for origin in env["DOA_CORS_ORIGINS"].split(",")
                if origin.strip()
            ]
        if env.get("DOA_ADMIN_SEED_EMAIL"):
            config.admin_seed_email = env["DOA_ADMIN_SEED_EMAIL"].strip()
        if env.get("DOA_LOG_LEVEL"):
            config.log_level = env["DOA_LOG_LEVEL"].upper()

        return config
