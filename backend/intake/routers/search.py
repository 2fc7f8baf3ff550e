from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from intake.database import get_db
from intake.dependencies import require_user_id
from intake.schemas.search import SearchResponse, SearchResult
from intake.services.search_service import search_documents

router = APIRouter(
    prefix="/search",
    tags=["search"],
)


@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
):
    offset = (page - 1) * per_page
    try:
        results = search_documents(db, user_id, q, limit=per_page, offset=offset)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return SearchResponse(
        results=[SearchResult(**r) for r in results],
        total=len(results),
        query=q,
    )
