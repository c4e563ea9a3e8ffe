"""Case-study content stages: extract, validate and enhance."""

from presales_core.services.case_study.stages import (
    CaseStudyEnhancer,
    CaseStudyExtractor,
    CaseStudyValidator,
)

__all__ = ["CaseStudyEnhancer", "CaseStudyExtractor", "CaseStudyValidator"]
