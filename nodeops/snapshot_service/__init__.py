"""
Snapshot Service - scheduled node data snapshots to S3-compatible storage.

This package captures the on-disk state of a stopped node, streams it as a
tar.gz archive straight into object storage and keeps the last N generations:

    ┌────────────┐  pause   ┌────────────┐  tar+gzip   ┌─────────────┐
    │ Scheduler  │────────▶│  Workload  │            │ ByteChannel │
    │  (cron)    │         │  (docker)  │   ┌───────▶│  (bounded)  │
    └─────┬──────┘         └────────────┘   │        └──────┬──────┘
          │                                  │               │ multipart
          ▼                                  │               ▼
    ┌────────────┐  walk   ┌──────────────┐  │        ┌─────────────┐
    │Orchestrator│───────▶│ArchiveEncoder│──┘        │     S3      │
    └─────┬──────┘        └──────────────┘           │ <proto>/<net>│
          │   walk        ┌──────────────┐  record   │  /<ts>.tar.gz│
          └─────────────▶│  Metadata    │──────────▶│  /<ts>-meta │
                          └──────────────┘           └─────────────┘

Invariants:
    - The archive never touches local disk; backpressure bounds memory
    - Archive and fingerprint see exactly the same file set
    - A paused workload is always resumed, whatever happened in between
    - Retention ordering comes from timestamps embedded in object keys

How to change safely:
    - The key layout is compatible with existing stored history; never change it
    - Add new metadata fields, don't remove or rename existing ones
"""

from ._version import __version__

__all__ = ["__version__"]
