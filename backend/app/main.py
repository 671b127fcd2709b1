from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import archive, billing, chain, deal_rooms
from app.config import get_settings
from app.logging_config import configure_logging
from app.models.base import init_db

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db()
    yield


app = FastAPI(
    title="Biz Dev Platform API",
    description="Archive extraction, deal rooms and the XDK ledger",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module, prefix, tag in (
    (archive, "/archive", "archive"),
    (deal_rooms, "/deal-rooms", "deal-rooms"),
    (chain, "/chain", "chain"),
    (billing, "/billing", "billing"),
):
    app.include_router(module.router, prefix=prefix, tags=[tag])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {"message": "Biz Dev Platform API", "docs": "/docs"}
