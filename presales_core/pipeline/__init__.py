"""Pipeline orchestration: document indexing and case-study processing."""

from presales_core.pipeline.case_study_pipeline import CaseStudyPipeline
from presales_core.pipeline.orchestrator import IngestionPipeline
from presales_core.pipeline.progress_tracker import IngestionProgressTracker

__all__ = ["CaseStudyPipeline", "IngestionPipeline", "IngestionProgressTracker"]
