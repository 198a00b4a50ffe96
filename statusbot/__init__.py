"""statusbot write path: webhook ingest, durable queue consumer, batched writes, idempotency."""
