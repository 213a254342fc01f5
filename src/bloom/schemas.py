"""Shared response envelope and camelCase base model."""

from __future__ import annotations

from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input, serializes camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Envelope(CamelModel, Generic[DataT]):
    status: Literal["success", "error", "pending"] = "success"
    data: DataT | None = None
    error: str | None = None
    error_code: str | None = None


def success(data: DataT) -> Envelope[DataT]:
    return Envelope(status="success", data=data)


def pending(data: DataT, message: str | None = None) -> Envelope[DataT]:
    return Envelope(status="pending", data=data, error=message)
