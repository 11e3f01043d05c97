from fastapi import APIRouter

from meeting_proxy.api.routes.admin import router as admin_router
from meeting_proxy.api.routes.health import router as health_router
from meeting_proxy.api.routes.jobs import router as jobs_router
from meeting_proxy.api.routes.proxy import router as proxy_router
from meeting_proxy.api.routes.webhooks import router as webhooks_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned paths are the ones registered with Zoom and the assistant adapter.
api_router.include_router(webhooks_router)
api_router.include_router(proxy_router)
api_router.include_router(admin_router)
api_router.include_router(jobs_router)

v1_router.include_router(webhooks_router)
v1_router.include_router(proxy_router)
v1_router.include_router(admin_router)
v1_router.include_router(jobs_router)
api_router.include_router(v1_router)
