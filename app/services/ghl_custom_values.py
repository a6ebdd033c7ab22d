"""
GoHighLevel Custom Values Client
Resolves the account scope behind a credential and fetches its custom values,
probing the known endpoint shapes in order until one answers.
"""

import httpx
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from app.config import settings
from app.models.schemas import CustomValueRecord, ScopeReference
from app.services.ghl_credentials import build_auth_header, inspect_credential
from app.services.ghl_endpoints import (
    EndpointShape,
    LOCATION_ARRAY_KEYS,
    RECORD_ARRAY_KEYS,
    custom_value_shapes,
    extract_array,
    location_discovery_shapes,
)
from app.services.ghl_errors import (
    GHLLookupError,
    ScopeUndeterminableError,
    UpstreamError,
    UpstreamShapeMismatchError,
    error_for_status,
)

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}

SCOPE_GUIDANCE = "Could not determine location ID - please provide it explicitly or use a valid JWT with location_id"


@dataclass
class ProbeFailure:
    shape: str
    status: Optional[int] = None
    reason: str = ""
    body: str = ""


class GHLCustomValuesClient:
    def __init__(self, credential: str):
        self.credential = credential
        self.headers = {
            "Authorization": build_auth_header(credential),
            "Accept": "application/json",
        }
        self.client = httpx.AsyncClient(headers=self.headers, timeout=settings.ghl_api_timeout)

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    async def _send(self, shape: EndpointShape) -> httpx.Response:
        """Send one endpoint shape, retrying network errors, 429 and 5xx with exponential backoff"""
        headers = {"Version": settings.ghl_api_version} if shape.versioned else {}
        max_retries = max(0, settings.ghl_max_retries)

        for attempt in range(max_retries + 1):
            backoff_delay = settings.ghl_retry_base_delay * (2 ** attempt)
            try:
                if shape.method == "POST":
                    response = await self.client.post(shape.url, params=shape.params, json=shape.json, headers=headers)
                else:
                    response = await self.client.get(shape.url, params=shape.params, headers=headers)
            except httpx.TransportError as e:
                if attempt < max_retries:
                    logger.warning(f"{shape.name}: {type(e).__name__} {e}. Retrying in {backoff_delay}s... (attempt {attempt + 1}/{max_retries + 1})")
                    await asyncio.sleep(backoff_delay)
                    continue
                raise

            if response.status_code in TRANSIENT_STATUSES and attempt < max_retries:
                logger.warning(f"{shape.name}: status {response.status_code}. Retrying in {backoff_delay}s... (attempt {attempt + 1}/{max_retries + 1})")
                await asyncio.sleep(backoff_delay)
                continue
            return response

    async def try_in_order(self, shapes: List[EndpointShape],
                           parse: Callable[[Any], Optional[Any]]) -> Tuple[Optional[Any], List[ProbeFailure]]:
        """Probe each shape in turn; the first one whose body `parse` accepts wins.

        `parse` returns None for a body it does not recognise. Failures never stop the
        probing, they are collected and returned alongside the result.
        """
        failures: List[ProbeFailure] = []
        for shape in shapes:
            logger.info(f"Probing {shape.name}: {shape.method} {shape.url} params={shape.params}")
            try:
                response = await self._send(shape)
            except httpx.HTTPError as e:
                logger.warning(f"{shape.name} failed: {type(e).__name__} {e}")
                failures.append(ProbeFailure(shape.name, reason=f"{type(e).__name__}: {e}"))
                continue

            status = response.status_code
            logger.info(f"{shape.name} response status: {status}")
            if not 200 <= status < 300:
                logger.warning(f"{shape.name} error {status}: {response.text[:500]}")
                failures.append(ProbeFailure(shape.name, status, response.reason_phrase or "", response.text))
                continue

            try:
                body = response.json()
            except ValueError as e:
                logger.warning(f"{shape.name} returned a non-JSON body: {e}")
                failures.append(ProbeFailure(shape.name, reason="Response body is not JSON", body=response.text))
                continue

            result = parse(body)
            if result is None:
                logger.warning(f"{shape.name} response has an unexpected format: {str(body)[:500]}")
                failures.append(ProbeFailure(shape.name, reason="Unexpected API response format", body=str(body)))
                continue

            return result, failures

        return None, failures

    async def discover_company_location(self, company_id: str) -> Optional[str]:
        """Find a location owned by the company, or None"""
        def first_location_id(body):
            locations = extract_array(body, LOCATION_ARRAY_KEYS)
            if not locations:
                return None
            first = locations[0]
            if not isinstance(first, dict):
                return None
            location_id = first.get("id") or first.get("_id")
            if not isinstance(location_id, str) or not location_id.strip():
                return None
            return location_id

        location_id, failures = await self.try_in_order(location_discovery_shapes(company_id), first_location_id)
        if location_id:
            logger.info(f"Using first location found for company {company_id}: {location_id}")
        else:
            logger.warning(f"No locations discovered for company {company_id} after {len(failures)} attempts")
        return location_id

    async def resolve_scope(self, explicit_location_id: Optional[str] = None) -> ScopeReference:
        if explicit_location_id:
            return ScopeReference(kind="location", id=explicit_location_id, source="explicit")

        logger.info("locationId not provided - attempting to extract it from the credential")
        hints = inspect_credential(self.credential)

        if hints.location_id:
            return ScopeReference(kind="location", id=hints.location_id, source="credential")

        if hints.company_id:
            logger.info(f"Company ID found in credential: {hints.company_id}, looking for its locations")
            location_id = await self.discover_company_location(hints.company_id)
            if location_id:
                return ScopeReference(kind="location", id=location_id, source="company_discovery")
            logger.info(f"Falling back to company scope {hints.company_id}")
            return ScopeReference(kind="company", id=hints.company_id, source="company")

        if hints.subject_id:
            logger.warning(f"HEURISTIC: no location_id or company_id in credential, trying sub claim {hints.subject_id} as a location ID")
            return ScopeReference(kind="location", id=hints.subject_id, source="subject_heuristic")

        raise ScopeUndeterminableError(SCOPE_GUIDANCE)

    async def fetch_custom_values(self, scope: ScopeReference) -> List[CustomValueRecord]:
        logger.info(f"Fetching custom values for {scope.label}")

        def parse_records(body):
            items = extract_array(body, RECORD_ARRAY_KEYS)
            if items is None:
                return None
            return parse_custom_values(items)

        records, failures = await self.try_in_order(custom_value_shapes(scope), parse_records)
        if records is not None:
            logger.info(f"Found {len(records)} custom values")
            return records
        error = failure_to_error(failures, scope)
        if scope.source == "company":
            # No location was found for the company and the company itself cannot be queried
            logger.error(f"Company scope fallback failed for {scope.id}: {error.message}")
            raise ScopeUndeterminableError(
                f"{SCOPE_GUIDANCE} (company {scope.id} has no reachable location: {error.message})",
                error.status,
                error.details,
            )
        raise error


def parse_custom_values(items: List[Any]) -> List[CustomValueRecord]:
    """Validate raw items, dropping any that lack a string key"""
    records = []
    skipped = 0
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("key"), str):
            skipped += 1
            continue
        try:
            records.append(CustomValueRecord.model_validate(item))
        except ValueError:
            skipped += 1
    if skipped:
        logger.warning(f"Skipped {skipped} custom values with an unexpected shape")
    return records


def failure_to_error(failures: List[ProbeFailure], scope: ScopeReference) -> GHLLookupError:
    """Pick the error to report once every shape has failed: the last HTTP error wins"""
    if not failures:
        return UpstreamError("No GHL endpoint available for this scope")
    with_status = [f for f in failures if f.status is not None]
    if with_status:
        last = with_status[-1]
        return error_for_status(last.status, last.reason, scope.label, last.body)
    last = failures[-1]
    if last.body:
        return UpstreamShapeMismatchError("Unexpected API response format", details=last.body[:2000])
    return UpstreamError(f"Could not reach GHL API: {last.reason}")
