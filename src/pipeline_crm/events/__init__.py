"""Event queue, hook registry, time-based scanner, and trigger processing."""
