"""Health check endpoint."""

from fastapi import APIRouter

from solr_reindex.dependencies import SettingsDep
from solr_reindex.schemas.health import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Returns the health status of the reindex API",
)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Report API health and the configured backends.

    Args:
        settings: Injected application settings.

    Returns:
        HealthResponse: Health status information.
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        registry_backend=settings.registry_backend,
        execution_backend=settings.execution_backend,
    )
