"""Storage, queue and realtime backends (in-memory and Redis)."""
