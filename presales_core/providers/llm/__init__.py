"""Chat inference provider adapters."""
