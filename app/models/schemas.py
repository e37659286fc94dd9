from __future__ import annotations

from pydantic import BaseModel


class Item(BaseModel):
    name: str
    price: float
    is_offer: bool | None = None


class ItemResponse(BaseModel):
    item_id: int
    name: str
    price: float


class SearchResult(BaseModel):
    name: str
    price: float


class SearchResponse(BaseModel):
    search_results: list[SearchResult]


class ItemCreatedResponse(BaseModel):
    message: str
    item: Item


class MessageResponse(BaseModel):
    message: str


class StatusResponse(BaseModel):
    status: str
    version: str
