"""Per-project conversation store."""
