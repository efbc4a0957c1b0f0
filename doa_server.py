"""DOA browser backend server.

Mounts the DOA router under a FastAPI application at ``/api/v1/``.
The router is mounted inside a guarded helper so that a storage failure
does not prevent the server from starting -- the health endpoint then
reports the error.

Usage::

    # Development (auto-reload)
    uvicorn doa_server:app --reload --port 8430

    # Production
    DOA_DB_PATH=/srv/doa/doa.db uvicorn doa_server:app --host 0.0.0.0 --port 8430

    # Or run directly
    python doa_server.py
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from doa.src.config import DoaConfig

logger = logging.getLogger("doa")

config = DoaConfig.from_env()

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="DOA Browser API",
    description=(
        "Delegation of Authority browser: hierarchical browse view, "
        "approval calculator, and admin management."
    ),
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_router_status: dict[str, Any] = {"loaded": False, "error": None}


def _mount_doa(settings: DoaConfig) -> None:
    """Mount the DOA router at ``/api/v1/``.

    Initializes DoaStorage with the configured SQLite database.
    """
    try:
        from doa.src.server import init_doa_storage, router as doa_router

        init_doa_storage(settings.db_path, admin_seed_email=settings.admin_seed_email)

        app.include_router(doa_router, prefix="/api/v1", tags=["doa"])
        _router_status["loaded"] = True
        logger.info("DOA router mounted at /api/v1/ (db: %s)", settings.db_path)
    except Exception as exc:
        _router_status["error"] = str(exc)
        logger.warning("DOA router failed to load: %s", exc)


# ---------------------------------------------------------------------------
# Top-level health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def app_health() -> dict[str, Any]:
    """Return overall server health.

    Returns:
        Dictionary with status and router load state.
    """
    return {
        "status": "ok" if _router_status["loaded"] else "error",
        "version": "0.1.0",
        "router": _router_status,
    }


_mount_doa(config)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Start the DOA server via uvicorn.

    Args:
        host: Bind address. Defaults to the configured host.
        port: Port number. Defaults to the configured port.
    """
    import uvicorn

    uvicorn.run(app, host=host or config.host, port=port or config.port)


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
