from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model exchanged with the frontend using camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FilterOptions(CamelModel):
    content_types: List[str] = Field(default_factory=list)
    locales: List[str] = Field(default_factory=list)


class SearchRequest(CamelModel):
    query: str = Field(..., min_length=1, description="The search query.")
    limit: int = Field(10, ge=1, le=50, description="The number of results to return.")
    content_type: Optional[str] = Field(None, description="Filter by content type.")
    locale: Optional[str] = Field(None, description="Filter by locale.")
    threshold: Optional[float] = Field(
        None, ge=0, le=1, description="Minimum similarity of a result."
    )


class SearchResult(CamelModel):
    uid: str
    content_type: Optional[str] = None
    locale: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[str] = None
    similarity: float


class SearchResponse(CamelModel):
    query: str
    results: List[SearchResult]
    total: int
    took_ms: int


class TrackSearchRequest(CamelModel):
    query: str = Field(..., min_length=1)
    results_count: int = Field(0, ge=0)
    filters: Dict[str, Any] = Field(default_factory=dict)


class PopularQuery(CamelModel):
    query: str
    searches: int
    avg_results: float


class Blog(CamelModel):
    uid: str
    content_type: Optional[str] = None
    locale: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[str] = None


class BlogList(BaseModel):
    blogs: List[Blog]
    count: int
    limit: int
    offset: int


class WebhookContentType(BaseModel):
    model_config = ConfigDict(extra="allow")

    uid: str


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    entry: Dict[str, Any]
    content_type: Optional[WebhookContentType] = None
    locale: Optional[str] = None

    @field_validator("entry")
    @classmethod
    def entry_has_uid(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(v.get("uid"), str) or not v["uid"]:
            raise ValueError("entry.uid is required")
        return v


class WebhookEvent(BaseModel):
    """Entry event delivered by the headless CMS."""

    model_config = ConfigDict(extra="allow")

    module: str = "entry"
    event: str
    data: WebhookData
