"""Search index backend adapters."""
