from pydantic import BaseModel


class SearchResult(BaseModel):
    document_id: str
    file_name: str
    document_type: str
    snippet: str | None
    rank: float


class SearchResponse(BaseModel):
    results: list[SearchResult]
    total: int
    query: str
