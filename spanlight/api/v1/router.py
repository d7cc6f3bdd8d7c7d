from fastapi import APIRouter

from spanlight.api.v1 import spans, taxonomy


api_router = APIRouter(prefix="/v1")

api_router.include_router(spans.router)
api_router.include_router(taxonomy.router)
