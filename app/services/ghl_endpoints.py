"""
Known GHL endpoint shapes for custom values and company location discovery.
GHL has moved these endpoints between API versions; each list is tried in order.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from app.config import settings
from app.models.schemas import ScopeReference

RECORD_ARRAY_KEYS = ("customValues", "custom_values", "data", "results")
LOCATION_ARRAY_KEYS = ("locations", "data")


@dataclass(frozen=True)
class EndpointShape:
    name: str
    url: str
    method: str = "GET"
    params: Optional[Dict[str, str]] = None
    json: Optional[Dict[str, Any]] = None
    versioned: bool = True  # v2 endpoints require the Version header


def extract_array(body: Any, keys: Tuple[str, ...]) -> Optional[List[Any]]:
    """Return the first list found under `keys`, or the body itself if it is a list"""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in keys:
            value = body.get(key)
            if isinstance(value, list):
                return value
    return None


def location_discovery_shapes(company_id: str) -> List[EndpointShape]:
    v2 = settings.ghl_v2_api_base_url.rstrip("/")
    v1 = settings.ghl_v1_api_base_url.rstrip("/")
    return [
        EndpointShape("v2 locations search", f"{v2}/locations/search",
                      params={"companyId": company_id, "limit": "10"}),
        EndpointShape("v2 locations search (POST)", f"{v2}/locations/search",
                      method="POST", json={"companyId": company_id}),
        EndpointShape("v2 company locations", f"{v2}/companies/{company_id}/locations/"),
        EndpointShape("v1 locations", f"{v1}/v1/locations/", versioned=False),
    ]


def custom_value_shapes(scope: ScopeReference) -> List[EndpointShape]:
    v2 = settings.ghl_v2_api_base_url.rstrip("/")
    v1 = settings.ghl_v1_api_base_url.rstrip("/")
    if scope.kind == "company":
        return [
            EndpointShape("v2 company customValues", f"{v2}/companies/{scope.id}/customValues"),
            EndpointShape("v2 custom-values by company", f"{v2}/custom-values/",
                          params={"companyId": scope.id}),
        ]
    return [
        EndpointShape("v2 location customValues", f"{v2}/locations/{scope.id}/customValues"),
        EndpointShape("v2 custom-values by location", f"{v2}/custom-values/",
                      params={"locationId": scope.id}),
        EndpointShape("v1 custom-values", f"{v1}/v1/custom-values/", versioned=False),
    ]
