"""All models must be imported here so SQLAlchemy registers them."""

from rostersync.models.core import Document  # noqa: F401
from rostersync.models.infrastructure import CommitAuditRecord, ImportTransactionRecord  # noqa: F401
