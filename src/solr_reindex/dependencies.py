"""FastAPI dependency injection utilities."""

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends

from solr_reindex.config import Settings, get_settings

if TYPE_CHECKING:
    from solr_reindex.services.job_service import ReindexJobService

# Common dependencies that can be injected into route handlers
SettingsDep = Annotated[Settings, Depends(get_settings)]


# Module-level cache for ReindexJobService singleton
_job_service_cache: "ReindexJobService | None" = None


async def get_job_service(
    settings: Annotated[Settings, Depends(get_settings)],
) -> "ReindexJobService":
    """Get or create the cached ReindexJobService.

    Returns:
        ReindexJobService instance wired to the configured registry and backend.
    """
    global _job_service_cache

    if _job_service_cache is None:
        from solr_reindex.reindex.dispatcher import ExecutionDispatcher
        from solr_reindex.reindex.factory import build_backend, open_registry
        from solr_reindex.services.job_service import ReindexJobService

        registry = await open_registry(settings)
        dispatcher = ExecutionDispatcher(
            registry,
            build_backend(settings, registry),
            liveness_timeout=settings.liveness_timeout_seconds,
        )
        _job_service_cache = ReindexJobService(registry, dispatcher)

    return _job_service_cache


async def shutdown_job_service() -> None:
    """Drop the cached service; execution units keep running out-of-band."""
    global _job_service_cache
    _job_service_cache = None


# Type aliases for dependency injection
JobServiceDep = Annotated["ReindexJobService", Depends(get_job_service)]
