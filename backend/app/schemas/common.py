"""Shared response envelopes."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a list endpoint; ``total`` counts every matching row."""

    items: list[T]
    total: int
    limit: int
    offset: int
