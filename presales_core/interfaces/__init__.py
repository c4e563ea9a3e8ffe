"""Abstract interfaces (ports) for every external collaborator.

Each concern has an ``I*`` abstract base class here and one or more
concrete adapters under :mod:`presales_core.providers`:

================================  =====================================
Interface                         Adapters
================================  =====================================
IBlobStore                        LocalBlobStore
ITextExtractionProvider           DocumentTextExtractor (PDF/PPTX/text)
IEmbeddingProvider                OpenAIEmbeddingProvider
ILLMProvider                      OpenAILLMProvider
ISearchIndexProvider              ChromaDBSearchIndexProvider
IValidationResultStore            SQLiteValidationResultStore
IDocumentStatusStore              SQLiteDocumentStatusStore
IRenditionStore                   SQLiteRenditionStore
================================  =====================================

Services and pipelines receive these through their constructors; nothing
reaches for a global client.
"""

from presales_core.interfaces.blob_store import IBlobStore
from presales_core.interfaces.document_status_store import IDocumentStatusStore
from presales_core.interfaces.embedding_provider import IEmbeddingProvider
from presales_core.interfaces.llm_provider import ILLMProvider
from presales_core.interfaces.rendition_store import IRenditionStore
from presales_core.interfaces.search_index_provider import ISearchIndexProvider
from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider
from presales_core.interfaces.validation_result_store import IValidationResultStore

__all__ = [
    "IBlobStore",
    "IDocumentStatusStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IRenditionStore",
    "ISearchIndexProvider",
    "ITextExtractionProvider",
    "IValidationResultStore",
]
