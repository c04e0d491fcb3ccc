"""RosterSync API — main application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rostersync.core.config import settings
from rostersync.core.logging import configure_logging
from rostersync.api.routes import config, imports, terms

configure_logging()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Schedule and directory import reconciliation. "
        "Preview a batch, review the change-set, commit a selection."
    ),
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}


# Routes
app.include_router(config.router, prefix="/api/v1/config", tags=["config"])
app.include_router(imports.router, prefix="/api/v1/imports", tags=["imports"])
app.include_router(terms.router, prefix="/api/v1/terms", tags=["terms"])
