import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import exit_clearance, journey, reports
from .config import Base, engine, settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="pgdesk - Tenant Settlement & Journey")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.on_event("startup")
def startup() -> None:
    # Tables are created on boot; the schema is small and has no migrations yet.
    Base.metadata.create_all(bind=engine)
    logger.info("pgdesk started", extra={"atomic_clearance_completion": settings.atomic_clearance_completion})


app.include_router(exit_clearance.router)
app.include_router(journey.router)
app.include_router(reports.router)


@app.get("/health", tags=["system"])
def health() -> dict:
    return {"status": "ok"}
