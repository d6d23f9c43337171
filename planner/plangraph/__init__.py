"""
PlanGraph - versioned planning graph repository.

This package implements the data layer of a personal planning application:
strategic Drivers decomposed into Milestones and Actions, plus per-day plans.
Every change is recorded git-style on top of a generic key-value store:

    ┌──────────────┐   read HEAD    ┌──────────────┐
    │   Mutation   │───────────────▶│ HEAD pointer │
    │  operation   │◀───────────────│  (one/scope) │
    └──────┬───────┘   snapshot     └──────▲───────┘
           │                               │ compare-and-swap
           ▼                               │
    ┌──────────────┐   append       ┌──────┴───────┐
    │  Commit log  │◀───────────────│  Versioned   │
    │ REV#<ts>#<id>│                │  repository  │
    └──────────────┘   materialize  └──────┬───────┘
                                           ▼
                                   ┌──────────────┐
                                   │   Snapshot   │
                                   │  partition   │
                                   │  (per rev)   │
                                   └──────────────┘

Invariants:
    - Revisions and snapshot partitions are write-once
    - HEAD only ever names a revision whose partition is fully written
    - HEAD is advanced with compare-and-swap; losers retry from a fresh read
    - Archived nodes are tombstoned, never dropped from later snapshots

How to change safely:
    - Persisted key formats live in keys.py; changing them breaks old data
    - New store backends must implement the KeyValueStore protocol
    - New mutations go through VersionedRepository.commit()
"""

from ._version import __version__

__all__ = ["__version__"]
