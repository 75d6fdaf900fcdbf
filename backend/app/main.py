# Practice billing back end entrypoint: FastAPI app wiring.

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from backend.app.core.settings import get_settings
from backend.app.core.logging_config import configure_logging
from backend.app.api import register
from backend.app.api import login
from backend.app.api import invoices
from backend.app.api import timesheets
from backend.app.api import queue
from backend.app.api import insurance
from backend.app.core.dev_seed import ensure_default_dev_users
from backend.app.db.migrations import run_migrations
from backend.app.db.session import SessionLocal, engine

logger = logging.getLogger(__name__)

app = FastAPI(title="Practice Billing")
settings = get_settings()

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(register.router)
app.include_router(login.router)
app.include_router(invoices.router)
app.include_router(timesheets.router)
app.include_router(queue.router)
app.include_router(insurance.router)


@app.get("/")
def read_root():
    return {"app": "Practice billing backend", "status": "ok"}


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.on_event("startup")
def prepare_database():
    configure_logging(settings.log_level)
    applied = run_migrations(engine)
    if applied:
        logger.info("Database migrated to version %s", applied[-1])
    db = SessionLocal()
    try:
        ensure_default_dev_users(db)
    finally:
        db.close()
