"""WHOOP sync pipeline.

Modules:
    orchestrator — Per-user sync and the bounded-concurrency cron batch
    store        — SyncStore protocol and its Postgres implementation
    dedup        — Per-key deduplication and upsert SQL
    summaries    — Daily summary roll-up
"""
