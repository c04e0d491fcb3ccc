"""
Domain errors raised by the import pipeline.

Services raise these; the route layer maps them to HTTP status codes.
Row-level problems are never raised: they become validation issues
on the transaction instead.
"""


class ImportPipelineError(ValueError):
    """Base class for import pipeline failures."""


class UnknownImportTypeError(ImportPipelineError):
    """The batch headers match neither a schedule nor a directory export."""


class TransactionNotFoundError(ImportPipelineError):
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Import transaction not found: {transaction_id}")


class TransactionAlreadyCommittedError(ImportPipelineError):
    """A transaction may be committed at most once."""

    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(
            f"Import transaction {transaction_id} is not in preview state (status: {status})"
        )


class UnresolvedMatchError(ImportPipelineError):
    """
    Selected changes depend on person matches that have no resolution.

    Raised before any write is issued.
    """

    def __init__(self, issue_ids: list[str], change_ids: list[str]):
        self.issue_ids = issue_ids
        self.change_ids = change_ids
        plural = "" if len(issue_ids) == 1 else "es"
        super().__init__(
            f"Resolve {len(issue_ids)} person match{plural} before committing "
            f"({len(change_ids)} selected change(s) depend on them)"
        )


class InvalidResolutionError(ImportPipelineError):
    """A match resolution references an unknown issue or person."""


class TermLockedError(ImportPipelineError):
    def __init__(self, term_code: str, reason: str):
        self.term_code = term_code
        self.reason = reason
        super().__init__(f"Term {term_code} is {reason}; commit rejected")


class CommitWriteError(ImportPipelineError):
    """
    A store write failed part-way through a commit.

    The store has no multi-document rollback, so the writes listed in
    applied_writes are already persisted.
    """

    def __init__(
        self,
        message: str,
        applied_change_ids: list[str],
        applied_writes: list[tuple[str, str]],
        failed_change_id: str | None = None,
    ):
        self.applied_change_ids = applied_change_ids
        self.applied_writes = applied_writes
        self.failed_change_id = failed_change_id
        super().__init__(message)

    @property
    def partial(self) -> bool:
        return bool(self.applied_writes)
