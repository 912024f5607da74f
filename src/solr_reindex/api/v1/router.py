"""Main API v1 router that combines all endpoint routers."""

from fastapi import APIRouter

from solr_reindex.api.v1.endpoints import health, jobs

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router)
api_router.include_router(jobs.router)
