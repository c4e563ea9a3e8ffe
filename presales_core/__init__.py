"""presales-core: document ingestion, hybrid search indexing and case-study
content tooling for the presales knowledge base."""

__version__ = "0.1.0"
