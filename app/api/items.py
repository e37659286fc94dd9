from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from app.models.schemas import Item, ItemCreatedResponse, ItemResponse, SearchResponse, SearchResult
from app.observability.context import get_request_logger
from app.observability.metrics import AppMetrics, get_metrics
from app.services.item_store import ItemStore, get_item_store

router = APIRouter(tags=["items"])


@router.get("/items/{item_id}", response_model=ItemResponse)
async def read_item(
    item_id: str,
    logger: Any = Depends(get_request_logger),
    metrics: AppMetrics = Depends(get_metrics),
    store: ItemStore = Depends(get_item_store),
) -> ItemResponse:
    # Parsed by hand so a bad id is counted as a domain outcome instead of a 422.
    try:
        parsed_id = int(item_id)
    except ValueError as exc:
        logger.warning("invalid_item_id", item_id=item_id, error=str(exc))
        metrics.record_item_operation("read", "bad_request")
        raise HTTPException(status_code=400, detail="Invalid item ID") from exc

    item = store.get(parsed_id)
    if item is None:
        logger.info("item_not_found", item_id=parsed_id)
        metrics.record_item_operation("read", "not_found")
        raise HTTPException(status_code=404, detail="Item not found")

    logger.info("item_retrieved", item_id=parsed_id)
    metrics.record_item_operation("read", "success")
    return ItemResponse(item_id=parsed_id, name=item.name, price=item.price)


@router.get("/search/", response_model=SearchResponse)
async def search_items(
    name: str = "",
    min_price: str = "0",
    logger: Any = Depends(get_request_logger),
    metrics: AppMetrics = Depends(get_metrics),
    store: ItemStore = Depends(get_item_store),
) -> SearchResponse:
    metrics.record_search_request()

    try:
        price_floor = float(min_price)
    except ValueError as exc:
        logger.warning("invalid_min_price", min_price=min_price, error=str(exc))
        price_floor = 0.0

    results = store.search(name=name, min_price=price_floor)

    metrics.record_search_results(len(results))
    logger.info("search_performed", query_name=name, min_price=price_floor, results_found=len(results))
    return SearchResponse(search_results=[SearchResult(name=item.name, price=item.price) for item in results])


@router.post("/items/", response_model=ItemCreatedResponse, response_model_exclude_none=True)
async def create_item(
    request: Request,
    logger: Any = Depends(get_request_logger),
    metrics: AppMetrics = Depends(get_metrics),
) -> ItemCreatedResponse:
    # Malformed JSON and schema errors are both ValueErrors (pydantic's included).
    try:
        payload = await request.json()
        item = Item.model_validate(payload)
    except ValueError as exc:
        logger.warning("create_item_invalid_payload", error=str(exc))
        metrics.record_item_operation("create", "bad_request")
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    logger.info("item_created", item_name=item.name, item_price=item.price)
    metrics.record_item_operation("create", "success")
    return ItemCreatedResponse(message="Item created successfully", item=item)
