"""Domain services: ingestion, search, summaries, case studies and renditions."""
