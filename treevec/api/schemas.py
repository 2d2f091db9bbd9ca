"""
Request and response models for the treevec HTTP API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any, Union


class VectorizeAllRequest(BaseModel):
    root: str

    @field_validator('root')
    @classmethod
    def root_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('root cannot be empty')
        return v


class VectorizeAllResponse(BaseModel):
    success: bool = True
    processed: int
    errors: int
    error_messages: List[str] = []


class VectorizeFileRequest(BaseModel):
    path: str
    kind: Optional[str] = None

    @field_validator('path')
    @classmethod
    def path_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('path cannot be empty')
        return v

    @field_validator('kind')
    @classmethod
    def kind_must_be_valid(cls, v):
        valid_kinds = ['origin', 'summarize']
        if v is not None and v not in valid_kinds:
            raise ValueError(f'kind must be one of: {valid_kinds}')
        return v


class VectorizeFileResponse(BaseModel):
    success: bool = True
    id: str
    path: str


class SearchRequest(BaseModel):
    query: str
    limit: int = 5

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v

    @field_validator('limit')
    @classmethod
    def limit_must_be_positive(cls, v):
        if v < 1 or v > 100:
            raise ValueError('limit must be between 1 and 100')
        return v


class SearchHit(BaseModel):
    id: str
    path: str
    type: str
    kind: str
    similarity: float
    raw: Union[str, Dict[str, Any]]


class SearchResponse(BaseModel):
    results: List[SearchHit]
    query: str
    total: int


class ItemsResponse(BaseModel):
    items: List[SearchHit]
    total: int


class StorageStatsResponse(BaseModel):
    count: int
    size_bytes: int
    dimension: Optional[int] = None


class ClearStorageResponse(BaseModel):
    success: bool
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    storage_count: int
    running: bool


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_type: str
