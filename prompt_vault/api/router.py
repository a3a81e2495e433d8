"""Main API router — aggregates all endpoint modules."""

from fastapi import APIRouter

from prompt_vault.api.feed import router as feed_router
from prompt_vault.api.images import router as images_router
from prompt_vault.api.prompts import router as prompts_router
from prompt_vault.api.tags import router as tags_router

api_router = APIRouter()

api_router.include_router(feed_router, prefix="/feed", tags=["feed"])
api_router.include_router(prompts_router, prefix="/prompts", tags=["prompts"])
api_router.include_router(images_router, prefix="/images", tags=["images"])
api_router.include_router(tags_router, prefix="/tags", tags=["tags"])
