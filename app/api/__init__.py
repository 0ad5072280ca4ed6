"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import pages

router = APIRouter()

router.include_router(pages.router, tags=["pages"])
