"""
Version constants for the inbox triage pipeline.

Component versions are recorded alongside classification results so audit
rows can be traced back to the prompt and normalizer that produced them.
"""

from .api.models import PipelineVersion

# API Version
API_VERSION = "1.0.0"

# Component versions (update these when implementations change)
PROMPT_VERSION = "inbox-prompt-1.2"
NORMALIZER_VERSION = "normalizer-1.0.0"
CLASSIFICATION_VERSION = "classification-1.0.0"
REVIEW_VERSION = "swipe-review-1.0.0"


def get_current_pipeline_version() -> PipelineVersion:
    """
    Get current pipeline version configuration.

    Returns:
        PipelineVersion instance with current versions
    """
    from .config import settings

    return PipelineVersion(
        model_version=f"{settings.llm_provider}/{settings.llm_model}",
        prompt_version=PROMPT_VERSION,
        normalizer_version=NORMALIZER_VERSION,
        classification_version=CLASSIFICATION_VERSION,
        review_version=REVIEW_VERSION,
    )
