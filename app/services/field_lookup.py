"""
GHL Field Lookup Service
Ties scope resolution, custom value fetching and matching together and turns
every outcome, failures included, into a response payload.
"""

import asyncio
import logging
from typing import List, Optional, Union

from app.config import settings
from app.models.schemas import (
    ChatbotParameter,
    FieldLookupResponse,
    FieldMapping,
    FieldType,
    MappingResolveResponse,
    MappingResult,
    MatchResult,
    ScopeReference,
)
from app.services.field_matcher import field_matcher
from app.services.ghl_credentials import mask_credential
from app.services.ghl_custom_values import GHLCustomValuesClient
from app.services.ghl_errors import (
    CredentialMissingError,
    FieldKeyInvalidError,
    GHLLookupError,
)

logger = logging.getLogger(__name__)


def validate_field_key(field_key: Optional[str]) -> str:
    if not field_key or not field_key.strip():
        raise FieldKeyInvalidError("Missing field key to search")
    if len(field_key) > settings.field_key_max_length:
        raise FieldKeyInvalidError(
            f"Field key cannot exceed {settings.field_key_max_length} characters"
        )
    return field_key


def assemble_response(match: Optional[MatchResult], error: Union[GHLLookupError, str, None] = None,
                      scope: Optional[ScopeReference] = None) -> FieldLookupResponse:
    """Build the lookup payload. Errors give found=False with empty diagnostics."""
    if error is not None or match is None:
        if isinstance(error, GHLLookupError):
            return FieldLookupResponse(
                found=False, error=error.message, details=error.details, status=error.status, scope=scope
            )
        return FieldLookupResponse(found=False, error=str(error or "No match computed"), scope=scope)

    return FieldLookupResponse(
        value=match.value,
        key=match.key,
        name=match.name,
        found=match.found,
        strategy=match.strategy,
        scope=scope,
        searchTerms=match.search_terms,
        potentialWelcomeMatches=match.candidate_matches,
        textContentFields=match.text_candidates,
        allKeys=match.all_records,
        suggestions=match.suggestions,
    )


async def _lookup(credential: str, field_key: str, location_id: Optional[str]) -> FieldLookupResponse:
    client = GHLCustomValuesClient(credential)
    scope = None
    try:
        scope = await client.resolve_scope(location_id)
        records = await client.fetch_custom_values(scope)
        match = field_matcher.match(records, field_key)
        return assemble_response(match, scope=scope)
    except GHLLookupError as e:
        logger.error(f"Field lookup failed: {e.message} (status={e.status})")
        return assemble_response(None, e, scope)
    finally:
        await client.close()


async def lookup_field(credential: Optional[str], field_key: Optional[str],
                       location_id: Optional[str] = None) -> FieldLookupResponse:
    logger.info(
        f"Field lookup: locationId={location_id} ghlApiKey={mask_credential(credential)} fieldKey={field_key}"
    )
    try:
        if not credential:
            raise CredentialMissingError("Missing GHL API key")
        field_key = validate_field_key(field_key)
        return await asyncio.wait_for(
            _lookup(credential, field_key, location_id), timeout=settings.ghl_request_budget
        )
    except GHLLookupError as e:
        return assemble_response(None, e)
    except asyncio.TimeoutError:
        logger.error(f"Field lookup exceeded the {settings.ghl_request_budget}s budget")
        return assemble_response(None, f"GHL lookup timed out after {settings.ghl_request_budget}s")
    except Exception as e:
        logger.exception(f"Error in field lookup: {e}")
        return assemble_response(None, str(e))


def convert_parameter(parameter: ChatbotParameter, value: Optional[str]):
    """Cast numeric chatbot parameters; raises ValueError (or OverflowError) on bad input"""
    if value is None:
        return None
    if parameter == ChatbotParameter.TEMPERATURE:
        return float(value)
    if parameter == ChatbotParameter.MAX_TOKENS:
        return int(float(value))
    return value


def _resolve_mapping(records, mapping: FieldMapping) -> MappingResult:
    result = MappingResult(chatbotParameter=mapping.chatbotParameter, ghlFieldKey=mapping.ghlFieldKey)
    if mapping.fieldType == FieldType.CUSTOM_FIELD:
        result.error = "Custom fields hold per-contact values and cannot be resolved at scope level"
        return result
    try:
        validate_field_key(mapping.ghlFieldKey)
    except FieldKeyInvalidError as e:
        result.error = e.message
        return result

    match = field_matcher.match(records, mapping.ghlFieldKey)
    result.found = match.found
    result.key = match.key
    try:
        result.value = convert_parameter(mapping.chatbotParameter, match.value)
    except (ValueError, OverflowError):
        result.error = f"Value {match.value!r} is not a valid {mapping.chatbotParameter.value}"
    return result


async def _resolve_all(credential: str, mappings: List[FieldMapping],
                       location_id: Optional[str]) -> MappingResolveResponse:
    client = GHLCustomValuesClient(credential)
    scope = None
    try:
        scope = await client.resolve_scope(location_id)
        records = await client.fetch_custom_values(scope)
    except GHLLookupError as e:
        logger.error(f"Mapping resolution failed: {e.message} (status={e.status})")
        return MappingResolveResponse(error=e.message, details=e.details, status=e.status, scope=scope)
    finally:
        await client.close()

    response = MappingResolveResponse(scope=scope)
    for mapping in mappings:
        result = _resolve_mapping(records, mapping)
        response.results.append(result)
        if result.found and result.error is None:
            response.parameters[mapping.chatbotParameter.value] = result.value
    logger.info(f"Resolved {len(response.parameters)}/{len(mappings)} chatbot parameters")
    return response


async def resolve_mappings(credential: Optional[str], mappings: List[FieldMapping],
                           location_id: Optional[str] = None) -> MappingResolveResponse:
    """Resolve every mapping against a single fetch of the scope's custom values"""
    logger.info(
        f"Resolving {len(mappings)} mappings: locationId={location_id} ghlApiKey={mask_credential(credential)}"
    )
    if not credential:
        return MappingResolveResponse(error="Missing GHL API key")
    if not mappings:
        return MappingResolveResponse(error="No mappings to resolve")
    try:
        return await asyncio.wait_for(
            _resolve_all(credential, mappings, location_id), timeout=settings.ghl_request_budget
        )
    except asyncio.TimeoutError:
        logger.error(f"Mapping resolution exceeded the {settings.ghl_request_budget}s budget")
        return MappingResolveResponse(error=f"GHL lookup timed out after {settings.ghl_request_budget}s")
    except Exception as e:
        logger.exception(f"Error resolving mappings: {e}")
        return MappingResolveResponse(error=str(e))
