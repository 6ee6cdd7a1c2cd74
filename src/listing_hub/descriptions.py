"""AI-generated listing descriptions using Claude."""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import TYPE_CHECKING, Any, Final

from listing_hub.db.queries import ListingQueryService
from listing_hub.errors import (
    DescriptionFormatError,
    DescriptionGenerationError,
    DescriptionUnavailableError,
)
from listing_hub.logging import get_logger

if TYPE_CHECKING:
    import anthropic

    from listing_hub.config import Settings
    from listing_hub.db.database import Database

logger = get_logger(__name__)

# SDK retry configuration
MAX_RETRIES: Final = 3
MAX_TOKENS: Final = 2048

# Rate limits, 5xx and connection errors in a row before calls are paused
_OUTAGE_LIMIT: Final = 3
_OUTAGE_PAUSE_SECONDS: Final = 300

_FENCE_PATTERN: Final = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

# Property columns worth showing the copywriter
_CONTEXT_FIELDS: Final = (
    "property_type",
    "floor_size",
    "lot_size",
    "land_size",
    "building_size",
    "rooms_total",
    "no_of_bedrooms",
    "no_of_bathrooms",
    "no_of_parking_spaces",
    "ceiling_height",
    "year_built",
    "project_name",
    "amenities",
    "indoor_features",
    "outdoor_features",
    "property_features",
)

SYSTEM_PROMPT: Final = """\
You are a professional real estate copywriter with over 15 years of experience.
You write compelling, sophisticated and persuasive property descriptions that
highlight the unique features and selling points of each property.

Given an existing listing description and key property details, write an
enhanced, professional listing description that uses engaging language,
emphasises the most attractive features and works the provided specifications
in naturally.

Return ONLY a JSON array of strings. Each string is one markdown block, for
example:
[
  "# Luxurious Downtown Penthouse",
  "## Description\\nElegant penthouse offering breathtaking city views.",
  "## Key Features",
  "- 3 Spacious Bedrooms",
  "- Private Rooftop Terrace",
  "## Additional Information",
  "- 2 Parking Spaces Included"
]

Rules:
1. Only use standard markdown syntax.
2. Ensure all quotes are properly escaped so the array parses as JSON.
3. Only mention location details given in address, region, city and area.
4. Do not invent features that are not in the property details."""


def parse_description_response(text: str) -> list[str]:
    """Parse a model response into description paragraphs.

    Accepts a bare JSON array or one wrapped in a ```json fence.

    Raises:
        DescriptionFormatError: The response is not a non-empty JSON array of strings.
    """
    stripped = _FENCE_PATTERN.sub("", text.strip())
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise DescriptionFormatError(f"Invalid AI description format: {e}") from e
    if not isinstance(parsed, list) or not parsed:
        raise DescriptionFormatError("Invalid AI description format: expected a JSON array")
    if not all(isinstance(p, str) for p in parsed):
        raise DescriptionFormatError("Invalid AI description format: array items must be strings")
    return parsed


def build_description_context(detail: dict[str, Any]) -> dict[str, Any]:
    """Reduce a property detail record to the facts the copywriter may use."""
    context: dict[str, Any] = {
        key: detail[key] for key in _CONTEXT_FIELDS if detail.get(key) not in (None, 0, {}, [])
    }
    location = detail.get("location") or {}
    for level in ("region", "city", "area"):
        if location.get(level):
            context[f"{level}_name"] = location[level]["name"]

    listing = detail.get("listing")
    if listing:
        context["title"] = listing["title"]
        context["description"] = listing["description"]
        if listing.get("address") and listing["address"] != "-":
            context["address"] = listing["address"]
        if listing.get("price_formatted"):
            context["price"] = listing["price_formatted"]
        if listing.get("offer_type"):
            context["offer_type"] = listing["offer_type"]
    return context


class DescriptionGenerator:
    """Generate marketing descriptions for properties using the Claude API."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "claude-sonnet-4-5-20250929",
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialize the generator.

        Args:
            api_key: Anthropic API key.
            model: Claude model id.
            timeout_seconds: Per-request timeout.
        """
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._client: anthropic.AsyncAnthropic | None = None
        self._outage_streak = 0
        self._paused_since: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> DescriptionGenerator:
        return cls(
            settings.anthropic_api_key.get_secret_value(),
            model=settings.anthropic_model,
            timeout_seconds=settings.ai_timeout_seconds,
        )

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Get or create the Anthropic client."""
        if self._client is None:
            import anthropic as _anthropic
            import httpx

            self._client = _anthropic.AsyncAnthropic(
                api_key=self._api_key,
                max_retries=MAX_RETRIES,  # SDK handles retry with exponential backoff
                timeout=httpx.Timeout(self._timeout_seconds),
            )
        return self._client

    def _note_outage(self) -> None:
        """Count an outage-class failure; enough in a row pauses the generator."""
        self._outage_streak += 1
        if self._outage_streak >= _OUTAGE_LIMIT:
            self._paused_since = time.monotonic()
            logger.warning("description_api_paused", outage_streak=self._outage_streak)

    def _note_healthy_call(self) -> None:
        if self._paused_since is not None:
            logger.info("description_api_resumed")
        self._outage_streak = 0
        self._paused_since = None

    def _is_paused(self) -> bool:
        """True while paused. After the pause, calls go through until the next outage."""
        if self._paused_since is None:
            return False
        waited = time.monotonic() - self._paused_since
        if waited < _OUTAGE_PAUSE_SECONDS:
            return True
        logger.info("description_api_trial_call", waited_seconds=round(waited, 1))
        return False

    async def generate(self, context: dict[str, Any], *, property_id: int | None = None) -> list[str]:
        """Generate description paragraphs for one property.

        Args:
            context: Property facts from :func:`build_description_context`.
            property_id: Property ID for logging.

        Returns:
            Markdown paragraphs.

        Raises:
            DescriptionUnavailableError: API outage, or calls are paused after repeated outages.
            DescriptionFormatError: The response was not a JSON array of strings.
        """
        from anthropic import (
            APIConnectionError,
            APIStatusError,
            InternalServerError,
            RateLimitError,
        )

        if self._is_paused():
            raise DescriptionUnavailableError("Anthropic API calls are paused after repeated outages")

        try:
            client = self._get_client()
            response = await client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS,
                system=SYSTEM_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": json.dumps(context, ensure_ascii=False),
                    }
                ],
            )
        except (RateLimitError, InternalServerError, APIConnectionError) as e:
            self._note_outage()
            log_event = {
                RateLimitError: "rate_limit_exhausted",
                InternalServerError: "server_error",
                APIConnectionError: "connection_error",
            }.get(type(e), "connection_error")
            logger.error(log_event, property_id=property_id, error=str(e))
            raise DescriptionUnavailableError(str(e)) from e
        except APIStatusError as e:
            logger.warning(
                "api_status_error",
                property_id=property_id,
                status_code=e.status_code,
                error=str(e),
                request_id=getattr(e, "_request_id", None),
            )
            raise DescriptionUnavailableError(str(e)) from e

        self._note_healthy_call()
        text = "".join(
            block.text for block in response.content if isinstance(getattr(block, "text", None), str)
        )
        if not text:
            logger.warning(
                "no_text_in_response",
                property_id=property_id,
                stop_reason=getattr(response, "stop_reason", None),
            )
        return parse_description_response(text)

    async def close(self) -> None:
        """Close the client."""
        if self._client is not None:
            await self._client.close()
            self._client = None


async def generate_for_property(
    queries: ListingQueryService,
    generator: DescriptionGenerator,
    property_id: int,
    *,
    timeout_seconds: float = 60.0,
) -> list[str] | None:
    """Generate and store a description for one property.

    Returns:
        The stored paragraphs, or None if the property does not exist.

    Raises:
        DescriptionGenerationError: The model failed or timed out.
    """
    detail = await queries.get_property_detail(property_id)
    if detail is None:
        return None

    context = build_description_context(detail)
    try:
        async with asyncio.timeout(timeout_seconds):
            paragraphs = await generator.generate(context, property_id=property_id)
    except TimeoutError as e:
        raise DescriptionUnavailableError(
            f"description generation timed out after {timeout_seconds}s"
        ) from e

    if not await queries.save_ai_description(property_id, paragraphs):
        return None
    logger.info(
        "ai_description_saved",
        property_id=property_id,
        paragraphs=len(paragraphs),
    )
    return paragraphs


async def backfill_descriptions(
    db: Database,
    generator: DescriptionGenerator,
    *,
    limit: int = 10,
    concurrency: int = 2,
    group_delay_seconds: float = 2.0,
    timeout_seconds: float = 60.0,
) -> dict[int, bool]:
    """Generate descriptions for the newest condominiums and warehouses lacking one.

    Properties are processed ``concurrency`` at a time with a pause between
    groups. A failure only affects its own property.

    Returns:
        Map of property id to whether a description was stored.
    """
    queries = ListingQueryService(db)
    property_ids = await queries.get_properties_missing_description(limit)
    if not property_ids:
        logger.info("no_properties_missing_description")
        return {}

    logger.info("ai_description_backfill_started", count=len(property_ids))
    results: dict[int, bool] = {}
    for start in range(0, len(property_ids), concurrency):
        if start > 0 and group_delay_seconds > 0:
            await asyncio.sleep(group_delay_seconds)

        group = property_ids[start : start + concurrency]
        outcomes = await asyncio.gather(
            *(
                generate_for_property(queries, generator, pid, timeout_seconds=timeout_seconds)
                for pid in group
            ),
            return_exceptions=True,
        )
        for pid, outcome in zip(group, outcomes, strict=True):
            if isinstance(outcome, DescriptionGenerationError):
                logger.warning(
                    "ai_description_failed",
                    property_id=pid,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                results[pid] = False
            elif isinstance(outcome, Exception):
                logger.error(
                    "ai_description_error",
                    property_id=pid,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                    exc_info=outcome,
                )
                results[pid] = False
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[pid] = outcome is not None

    logger.info(
        "ai_description_backfill_complete",
        stored=sum(results.values()),
        failed=sum(1 for ok in results.values() if not ok),
    )
    return results
