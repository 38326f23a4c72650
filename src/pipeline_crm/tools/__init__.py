"""Tool servers exposed to agents."""
