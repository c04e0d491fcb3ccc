"""
Collection configuration.

Collections are application configuration, not database schema.
Every document lives in the same `documents` table; adding a collection
requires zero migrations, just an entry here.

Each collection defines:
  - display metadata (label, plural_label)
  - which fields a projected entity must carry
  - which fields identify a record (changing them on modify is flagged)
  - which fields are internal linking data (kept in diffs, hidden from
    the user-facing summary, always written on commit)
  - which fields are bookkeeping and never diffed
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CollectionConfig:
    """Configuration for a document collection."""
    name: str
    label: str
    plural_label: str
    required_fields: list[str] = field(default_factory=list)
    identity_fields: list[str] = field(default_factory=list)
    internal_fields: list[str] = field(default_factory=list)
    ignored_fields: list[str] = field(
        default_factory=lambda: ["created_at", "updated_at", "row_hash"]
    )
    # Whether import previews emit Changes for this collection
    importable: bool = True


# ─── Collection Registry ───────────────────────────────────────

COLLECTIONS: dict[str, CollectionConfig] = {}


def register_collection(config: CollectionConfig) -> CollectionConfig:
    """Register a collection configuration."""
    COLLECTIONS[config.name] = config
    return config


def get_collection_config(name: str) -> CollectionConfig | None:
    """Look up configuration for a collection name."""
    return COLLECTIONS.get(name)


def get_internal_fields(name: str) -> frozenset[str]:
    cfg = COLLECTIONS.get(name)
    return frozenset(cfg.internal_fields) if cfg else frozenset()


def get_ignored_fields(name: str) -> frozenset[str]:
    cfg = COLLECTIONS.get(name)
    return frozenset(cfg.ignored_fields) if cfg else frozenset()


def get_identity_fields(name: str) -> frozenset[str]:
    cfg = COLLECTIONS.get(name)
    return frozenset(cfg.identity_fields) if cfg else frozenset()


# ─── Collections ───────────────────────────────────────────────

register_collection(CollectionConfig(
    name="schedules",
    label="Schedule",
    plural_label="Schedules",
    required_fields=["course_code", "section", "term"],
    identity_fields=["course_code", "section", "term_code", "crn", "clss_id"],
    internal_fields=[
        "identity_key",
        "identity_keys",
        "identity_source",
        "updated_at",
        "space_ids",
        "space_display_names",
        "instructor_id",
        "instructor_ids",
        "instructor_assignments",
    ],
))

register_collection(CollectionConfig(
    name="people",
    label="Person",
    plural_label="People",
    required_fields=["first_name", "last_name"],
    identity_fields=["email", "baylor_id"],
))

register_collection(CollectionConfig(
    name="rooms",
    label="Room",
    plural_label="Rooms",
    required_fields=["display_name"],
    identity_fields=["space_key"],
))

register_collection(CollectionConfig(
    name="terms",
    label="Term",
    plural_label="Terms",
    required_fields=["term_code"],
    importable=False,
))
