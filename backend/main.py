from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Add parent dir so we can import adrevenue
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from adrevenue.config import default_db_path, load_settings
from adrevenue.errors import ConfigurationError
from adrevenue.gam.auth import ServiceAccountTokenProvider

from api.auth import router as auth_router
from api.reports import router as reports_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("adrevenue.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = default_db_path()
    if not Path(db).exists():
        logger.warning("DB not found at %s - run scripts/init_empty_db.py first", db)

    # One token provider per process; its token cache spans requests.
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        logger.warning("Ad Manager reporting disabled: %s", exc)
        app.state.gam_settings = None
        app.state.gam_tokens = None
    else:
        app.state.gam_settings = settings
        app.state.gam_tokens = ServiceAccountTokenProvider(settings.service_account_json)
    yield


app = FastAPI(title="Ad Revenue Reporting", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(reports_router, prefix="/api", tags=["reports"])


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "db": os.environ.get("ADREVENUE_DB_PATH", default_db_path()),
        "gam_configured": getattr(app.state, "gam_settings", None) is not None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
