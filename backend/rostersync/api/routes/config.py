"""Configuration API routes — collection registry and import settings."""

from fastapi import APIRouter

from rostersync.core.collection_config import COLLECTIONS
from rostersync.core.config import settings
from rostersync.services.projection import DIRECTORY_HEADER_ALIASES, SCHEDULE_HEADER_ALIASES

router = APIRouter()


# ─── Collections ───────────────────────────────────────────────

@router.get("/collections")
async def get_collection_config():
    """
    Get the complete collection configuration.

    Returns every registered collection with its required, identity and
    internal fields. The UI uses internal_fields to hide linking data
    from diff summaries.
    """
    return {
        name: {
            "label": cfg.label,
            "plural_label": cfg.plural_label,
            "required_fields": cfg.required_fields,
            "identity_fields": cfg.identity_fields,
            "internal_fields": cfg.internal_fields,
            "ignored_fields": cfg.ignored_fields,
            "importable": cfg.importable,
        }
        for name, cfg in COLLECTIONS.items()
    }


# ─── Import Formats ────────────────────────────────────────────

@router.get("/import-formats")
async def get_import_formats():
    """Accepted header aliases per import type, plus matching settings."""
    return {
        "schedule": SCHEDULE_HEADER_ALIASES,
        "directory": DIRECTORY_HEADER_ALIASES,
        "matching": {
            "min_score": settings.MATCH_MIN_SCORE,
            "max_candidates": settings.MATCH_MAX_CANDIDATES,
        },
    }
