"""
Git-like versioning over a key-value store.

Components (leaf first):
- revision_ids: unique id + sortable timestamp per mutation
- commit_log: append-only revision records per scope
- head: compare-and-swap HEAD pointer
- materializer: full snapshot copy per revision
- repository: the commit protocol tying them together

Invariants:
    - Revisions and snapshot partitions are write-once
    - HEAD only ever names a fully materialized revision
    - Every committed revision's parent is the HEAD it replaced

How to change safely:
    - Scopes are opaque here; key layout changes belong in keys.py
    - Keep mutate callbacks pure so retries are safe
"""

from .commit_log import CommitLog
from .head import HeadPointer
from .materializer import SnapshotMaterializer
from .records import Head, Revision, RevisionSource
from .repository import CommitResult, Mutation, ScopeState, VersionedRepository
from .revision_ids import RevisionIdentifier, format_timestamp, new_revision, utc_now_iso

__all__ = [
    "CommitLog",
    "CommitResult",
    "Head",
    "HeadPointer",
    "Mutation",
    "Revision",
    "RevisionIdentifier",
    "RevisionSource",
    "ScopeState",
    "SnapshotMaterializer",
    "VersionedRepository",
    "format_timestamp",
    "new_revision",
    "utc_now_iso",
]
