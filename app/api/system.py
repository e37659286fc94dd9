from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.models.schemas import MessageResponse, StatusResponse
from app.observability.context import get_request_logger

router = APIRouter(tags=["system"])


@router.get("/", response_model=MessageResponse)
async def read_root(logger: Any = Depends(get_request_logger)) -> MessageResponse:
    logger.info("root_accessed")
    return MessageResponse(message="Welcome to the Python application!")


@router.get("/status", response_model=StatusResponse)
async def get_status(logger: Any = Depends(get_request_logger)) -> StatusResponse:
    logger.info("health_check_performed")
    return StatusResponse(status="healthy", version="1.0")


# Deliberately failing endpoints used by the load generator and dashboards.


@router.get("/error-500")
async def simulate_error_500(logger: Any = Depends(get_request_logger)) -> None:
    logger.error("simulated_internal_server_error")
    raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/error-400")
async def simulate_error_400(logger: Any = Depends(get_request_logger)) -> None:
    logger.warning("simulated_bad_request")
    raise HTTPException(status_code=400, detail="Bad Request")
