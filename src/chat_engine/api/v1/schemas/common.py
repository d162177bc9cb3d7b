from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class SeqPage(BaseModel, Generic[T]):
    """One page of a timeline, newest first. Pass next_before_seq back to continue."""

    items: list[T]  # type: ignore[type-var]
    next_before_seq: int | None = None
