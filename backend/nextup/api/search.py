"""
search.py - Trakt show search
"""
from fastapi import APIRouter, Depends, Query
import logging

from nextup.api.deps import get_catalog_factory, get_trakt_token
from nextup.utils.payload import show_summary_from_catalog

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/search")
async def search_shows(
    query: str = Query(..., min_length=1, description="Search query"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    token=Depends(get_trakt_token),
    catalog_factory=Depends(get_catalog_factory),
):
    result = await catalog_factory(token).search(query, page=page, page_size=limit)
    return {
        "results": [
            {"score": r.score, "show": show_summary_from_catalog(r.show)}
            for r in result.results
        ],
        "pagination": result.pagination.model_dump(),
    }
