"""Storage adapters: blob store and aiosqlite-backed stores."""
