"""Resilience walkthroughs — retry policies, batches and the artifact pipeline.

READING ORDER
─────────────
    01 — Retry policies (backoff, jitter, classification, timeouts)
    02 — Batch runner (bounded concurrency, progress, cleanup, cancellation)
    03 — Artifact pipeline (fetch → render → release, in bulk)
"""
