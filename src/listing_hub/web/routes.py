"""HTTP routes: health, message submission, listing search and favorites."""

import json
import math
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from listing_hub.db.queries import ListingQueryService
from listing_hub.descriptions import DescriptionGenerator, generate_for_property
from listing_hub.errors import DescriptionGenerationError, InvalidMessageError
from listing_hub.logging import get_logger
from listing_hub.models import SQLITE_MAX_INTEGER
from listing_hub.queue import MessageQueue, parse_message
from listing_hub.web.filters import FilterDep

logger = get_logger(__name__)

router = APIRouter()

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100
# Keeps the row offset within SQLite's integer range
MAX_PAGE = SQLITE_MAX_INTEGER // MAX_PER_PAGE


class FavoriteCreate(BaseModel):
    """Body of a favorite submission."""

    listing_id: int = Field(gt=0, le=SQLITE_MAX_INTEGER)


def _get_queries(request: Request) -> ListingQueryService:
    return request.app.state.queries  # type: ignore[no-any-return]


def _get_queue(request: Request) -> MessageQueue:
    return request.app.state.queue  # type: ignore[no-any-return]


def _get_generator(request: Request) -> DescriptionGenerator | None:
    return request.app.state.generator  # type: ignore[no-any-return]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _is_storable_id(value: int) -> bool:
    return 0 < value <= SQLITE_MAX_INTEGER


@router.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


@router.post("/")
async def submit_message(request: Request) -> JSONResponse:
    """Accept a queue message for delayed asynchronous processing."""
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return _error("request body must be valid JSON", 400)

    try:
        message = parse_message(payload)
    except InvalidMessageError as e:
        logger.warning("invalid_queue_message", error=str(e))
        return _error(f"invalid message: {e}", 400)

    delay = request.app.state.settings.queue_delay_seconds
    await _get_queue(request).enqueue(message, delay=delay)
    logger.info("queue_message_accepted", type=message.type.value, source=message.source.value)
    return JSONResponse(
        {"data": {"queued": True, "type": message.type.value, "delay_seconds": delay}},
        status_code=202,
    )


@router.get("/api/properties")
async def list_properties(
    request: Request,
    filters: FilterDep,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> JSONResponse:
    """Search active listings."""
    page = max(1, min(MAX_PAGE, page))
    per_page = max(1, min(MAX_PER_PAGE, per_page))

    items, total = await _get_queries(request).get_properties_paginated(
        filters, page=page, per_page=per_page
    )
    total_pages = math.ceil(total / per_page) if total > 0 else 1
    return JSONResponse(
        {
            "data": items,
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": total_pages,
            },
        }
    )


@router.get("/api/properties/cities")
async def list_cities(request: Request) -> JSONResponse:
    cities = await _get_queries(request).get_cities()
    return JSONResponse({"data": cities})


@router.get("/api/properties/{property_id}")
async def property_detail(request: Request, property_id: int) -> JSONResponse:
    """Property with its active listing, location and price history."""
    if not _is_storable_id(property_id):
        return _error("property not found", 404)
    detail = await _get_queries(request).get_property_detail(property_id)
    if detail is None:
        return _error("property not found", 404)
    return JSONResponse({"data": detail})


@router.patch("/api/properties/{property_id}/generate-ai-description")
async def generate_ai_description(request: Request, property_id: int) -> JSONResponse:
    """Generate (or regenerate) the AI description for one property."""
    if not _is_storable_id(property_id):
        return _error("property not found", 404)
    generator = _get_generator(request)
    if generator is None:
        return _error("AI description service is not configured", 502)

    settings = request.app.state.settings
    try:
        paragraphs = await generate_for_property(
            _get_queries(request),
            generator,
            property_id,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    except DescriptionGenerationError as e:
        logger.warning(
            "ai_description_request_failed",
            property_id=property_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return _error("AI description generation failed", 502)

    if paragraphs is None:
        return _error("property not found", 404)
    return JSONResponse(
        {"data": {"property_id": property_id, "ai_generated_description": paragraphs}}
    )


@router.get("/api/users/{user_id}/favorites")
async def list_favorites(request: Request, user_id: str) -> JSONResponse:
    favorites = await _get_queries(request).list_favorites(user_id)
    return JSONResponse({"data": favorites})


@router.post("/api/users/{user_id}/favorites")
async def add_favorite(request: Request, user_id: str, body: FavoriteCreate) -> JSONResponse:
    """Favorite a listing. Re-favoriting returns the existing row."""
    favorite = await _get_queries(request).add_favorite(user_id, body.listing_id)
    if favorite is None:
        return _error("listing not found", 404)
    return JSONResponse({"data": favorite}, status_code=201)


@router.delete("/api/users/{user_id}/favorites/{listing_id}")
async def remove_favorite(request: Request, user_id: str, listing_id: int) -> JSONResponse:
    if not _is_storable_id(listing_id):
        return _error("favorite not found", 404)
    removed = await _get_queries(request).remove_favorite(user_id, listing_id)
    if not removed:
        return _error("favorite not found", 404)
    data: dict[str, Any] = {"user_id": user_id, "listing_id": listing_id, "removed": True}
    return JSONResponse({"data": data})
