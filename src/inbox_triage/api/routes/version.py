"""
Version information endpoint.
"""

from fastapi import APIRouter

from inbox_triage.api.models import VersionResponse
from inbox_triage.version import API_VERSION, get_current_pipeline_version

router = APIRouter()


@router.get("/version", response_model=VersionResponse)
async def get_version() -> VersionResponse:
    """
    Get current API and pipeline version information.

    Returns:
        Version information for audit and debugging
    """
    return VersionResponse(
        api_version=API_VERSION,
        pipeline_version=get_current_pipeline_version(),
    )
