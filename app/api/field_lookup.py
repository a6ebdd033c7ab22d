"""
GHL Field Lookup API Endpoints
Test a GHL custom value key and resolve chatbot parameter mappings.
Every response is HTTP 200; the `error` field signals failure.
"""

from fastapi import APIRouter
import logging

from app.models.schemas import (
    CHATBOT_PARAMETER_LABELS,
    FieldLookupRequest,
    FieldLookupResponse,
    MappingResolveRequest,
    MappingResolveResponse,
)
from app.services.field_lookup import lookup_field, resolve_mappings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/test-field", response_model=FieldLookupResponse)
async def test_ghl_field(request: FieldLookupRequest):
    """Find the custom value matching `fieldKey` in the credential's location"""
    return await lookup_field(request.ghlApiKey, request.fieldKey, request.locationId)


@router.post("/resolve-mappings", response_model=MappingResolveResponse)
async def resolve_chatbot_mappings(request: MappingResolveRequest):
    """Resolve all chatbot parameter mappings with a single fetch of custom values"""
    return await resolve_mappings(request.ghlApiKey, request.mappings, request.locationId)


@router.get("/chatbot-parameters")
async def get_chatbot_parameters():
    return [{"value": param.value, "label": label} for param, label in CHATBOT_PARAMETER_LABELS.items()]
