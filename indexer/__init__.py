"""Genesis state migration, storage, checkpoint and validation package."""

from indexer.checkpoint import checkpoint, checkpoint_batch, latest_checkpoint_height, latest_processed_height
from indexer.config import IndexerConfig, load_indexer_config
from indexer.envelope import open_entity, open_node
from indexer.errors import (
    CheckpointError,
    DocumentError,
    IndexerError,
    MigrationWriteError,
    SignatureMismatchError,
    StorageConnectionError,
    TransactionError,
)
from indexer.genesis import FileGenesisSource, GenesisDocument, load_genesis_document, parse_genesis_document
from indexer.migration_generator import MigrationGenerator
from indexer.migrations import apply_migration, apply_migration_file, bootstrap_chain_schema
from indexer.storage import PostgresClient, QueryBatch
from indexer.validation import Mismatch, ToleratedDiscrepancy, ValidationReport, validate_checkpoint

__all__ = [
    "CheckpointError",
    "DocumentError",
    "FileGenesisSource",
    "GenesisDocument",
    "IndexerConfig",
    "IndexerError",
    "MigrationGenerator",
    "MigrationWriteError",
    "Mismatch",
    "PostgresClient",
    "QueryBatch",
    "SignatureMismatchError",
    "StorageConnectionError",
    "ToleratedDiscrepancy",
    "TransactionError",
    "ValidationReport",
    "apply_migration",
    "apply_migration_file",
    "bootstrap_chain_schema",
    "checkpoint",
    "checkpoint_batch",
    "latest_checkpoint_height",
    "latest_processed_height",
    "load_genesis_document",
    "load_indexer_config",
    "open_entity",
    "open_node",
    "parse_genesis_document",
    "validate_checkpoint",
]
