"""Error taxonomy for migration generation, application and checkpointing."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class IndexerError(RuntimeError):
    """Base class for all indexer failures."""


class DocumentError(IndexerError):
    """Raised when a genesis document is malformed or cannot be verified."""


class SignatureMismatchError(DocumentError):
    """Raised when a signed envelope does not verify under its context."""

    def __init__(self, kind: str, public_key: str, context: str) -> None:
        super().__init__(
            f"Signature verification failed for {kind} envelope "
            f"(public_key={public_key}, context={context!r})."
        )
        self.kind = kind
        self.public_key = public_key
        self.context = context


class MigrationWriteError(IndexerError, OSError):
    """Raised when a computed migration could not be persisted."""

    def __init__(self, path: Path, script: str, cause: OSError) -> None:
        super().__init__(f"Failed to write migration to {path}: {cause}")
        self.path = path
        self.script = script


class TransactionError(IndexerError):
    """Raised when a batch statement fails; the whole batch was rolled back."""

    def __init__(self, index: int, statement: str, cause: BaseException) -> None:
        super().__init__(f"Batch statement {index} failed and the batch was rolled back: {cause}")
        self.index = index
        self.statement = statement


class StorageConnectionError(IndexerError):
    """Raised on pool exhaustion or an unreachable / broken backend."""


class CheckpointError(IndexerError):
    """Raised when a checkpoint could not resolve a processed height."""

    def __init__(self, chain_schema: str, detail: Optional[str] = None) -> None:
        message = f"Checkpoint for schema {chain_schema} has no checkpointed height."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.chain_schema = chain_schema
