"""Search: filter expressions, index management and query service."""
