import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import jwt
import pytest

from app.config import settings
from app.models.schemas import ScopeReference
from app.services.ghl_custom_values import GHLCustomValuesClient, parse_custom_values
from app.services.ghl_errors import (
    ScopeUndeterminableError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamPermissionError,
    UpstreamShapeMismatchError,
)

SECRET = "test-secret-key-for-ghl-credentials-0123456789"
V2 = "https://services.leadconnectorhq.com"
V1 = "https://rest.gohighlevel.com"


def make_token(payload):
    return jwt.encode(payload, SECRET, algorithm="HS256")


def make_response(status_code=200, json_data=None, text=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.reason_phrase = reason
    if json_data is not None:
        response.json.return_value = json_data
        response.text = json.dumps(json_data)
    else:
        response.json.side_effect = ValueError("Expecting value")
        response.text = text or ""
    return response


def route(responses):
    """side_effect that answers by URL; unknown URLs get a 404"""
    def handler(url, params=None, headers=None, json=None):
        answer = responses.get(url, make_response(404, {"message": "Not Found"}, reason="Not Found"))
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer
    return handler


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(settings, "ghl_retry_base_delay", 0.0)


@pytest.fixture
def location_scope():
    return ScopeReference(kind="location", id="loc_123", source="explicit")


@pytest.mark.asyncio
async def test_headers_configuration():
    token = make_token({"location_id": "loc_123"})
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.aclose = AsyncMock()
        client = GHLCustomValuesClient(token)
        assert client.headers == {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        assert mock_client.call_args[1]["timeout"] == settings.ghl_api_timeout
        await client.close()

        legacy = GHLCustomValuesClient("legacy-api-key")
        assert legacy.headers["Authorization"] == "legacy-api-key"
        await legacy.close()


@pytest.mark.asyncio
async def test_explicit_location_short_circuits():
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock()
        client = GHLCustomValuesClient("not-a-jwt")
        scope = await client.resolve_scope("loc_explicit")
        assert scope.kind == "location"
        assert scope.id == "loc_explicit"
        assert scope.source == "explicit"
        mock_client.return_value.get.assert_not_called()


@pytest.mark.asyncio
async def test_location_from_credential():
    with patch('httpx.AsyncClient'):
        client = GHLCustomValuesClient(make_token({"location_id": "loc_jwt", "company_id": "comp_1"}))
        scope = await client.resolve_scope()
        assert (scope.kind, scope.id, scope.source) == ("location", "loc_jwt", "credential")


@pytest.mark.asyncio
async def test_company_discovery_skips_failing_shapes():
    responses = {
        f"{V2}/locations/search": [
            httpx.ConnectError("connection refused"),
            httpx.ConnectError("connection refused"),
            httpx.ConnectError("connection refused"),
        ],
        f"{V2}/companies/comp_1/locations/": make_response(200, {"locations": [{"id": "loc_a"}, {"id": "loc_b"}]}),
    }
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        mock_client.return_value.post = AsyncMock(return_value=make_response(200, {"locations": []}))
        client = GHLCustomValuesClient(make_token({"company_id": "comp_1"}))
        scope = await client.resolve_scope()

    assert (scope.kind, scope.id, scope.source) == ("location", "loc_a", "company_discovery")
    # POST search answered with an empty list, so probing went on
    mock_client.return_value.post.assert_called_once()


@pytest.mark.asyncio
async def test_company_discovery_skips_non_string_location_ids():
    responses = {
        f"{V2}/locations/search": make_response(200, {"locations": [{"id": 12345}]}),
        f"{V2}/companies/comp_1/locations/": make_response(200, {"locations": [{"id": "loc_ok"}]}),
    }
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        mock_client.return_value.post = AsyncMock(return_value=make_response(200, {"locations": [{"_id": "  "}]}))
        client = GHLCustomValuesClient(make_token({"company_id": "comp_1"}))
        scope = await client.resolve_scope()

    assert (scope.kind, scope.id, scope.source) == ("location", "loc_ok", "company_discovery")


@pytest.mark.asyncio
async def test_company_discovery_accepts_data_key_and_underscore_id():
    responses = {
        f"{V2}/locations/search": make_response(200, {"data": [{"_id": "loc_x"}]}),
    }
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        client = GHLCustomValuesClient(make_token({"company_id": "comp_1"}))
        scope = await client.resolve_scope()
    assert scope.id == "loc_x"


@pytest.mark.asyncio
async def test_company_scope_fallback_when_no_location_found():
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route({}))
        mock_client.return_value.post = AsyncMock(return_value=make_response(404, {"message": "Not Found"}))
        client = GHLCustomValuesClient(make_token({"company_id": "comp_1", "sub": "user_1"}))
        scope = await client.resolve_scope()
    assert (scope.kind, scope.id, scope.source) == ("company", "comp_1", "company")


@pytest.mark.asyncio
async def test_subject_heuristic():
    with patch('httpx.AsyncClient'):
        client = GHLCustomValuesClient(make_token({"sub": "maybe_a_location"}))
        scope = await client.resolve_scope()
    assert (scope.kind, scope.id, scope.source) == ("location", "maybe_a_location", "subject_heuristic")


@pytest.mark.asyncio
async def test_scope_undeterminable():
    with patch('httpx.AsyncClient'):
        client = GHLCustomValuesClient("legacy-api-key")
        with pytest.raises(ScopeUndeterminableError) as exc_info:
            await client.resolve_scope()
    assert "provide it explicitly" in exc_info.value.message


@pytest.mark.asyncio
async def test_fetch_custom_values_first_shape(location_scope):
    records = [
        {"id": "1", "key": "openai_key", "name": "OpenAI Key", "value": "sk-abc"},
        {"id": "2", "name": "No key here", "value": "x"},
        {"id": "3", "key": "max_tokens", "name": "Max Tokens", "value": 500},
    ]
    responses = {f"{V2}/locations/loc_123/customValues": make_response(200, {"customValues": records})}
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        client = GHLCustomValuesClient("token")
        result = await client.fetch_custom_values(location_scope)

    assert [r.key for r in result] == ["openai_key", "max_tokens"]
    assert result[1].value == "500"
    call = mock_client.return_value.get.call_args
    assert call[0][0] == f"{V2}/locations/loc_123/customValues"
    assert call[1]["headers"] == {"Version": settings.ghl_api_version}


@pytest.mark.asyncio
async def test_fetch_falls_through_404_and_shape_mismatch(location_scope):
    responses = {
        f"{V2}/locations/loc_123/customValues": make_response(404, {"message": "Not Found"}, reason="Not Found"),
        f"{V2}/custom-values/": make_response(200, {"unexpected": True}),
        f"{V1}/v1/custom-values/": make_response(200, {"results": [{"key": "welcome_message", "value": "Hi"}]}),
    }
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        client = GHLCustomValuesClient("legacy-api-key")
        result = await client.fetch_custom_values(location_scope)

    assert [r.key for r in result] == ["welcome_message"]
    # v1 endpoints do not take the Version header
    assert mock_client.return_value.get.call_args[1]["headers"] == {}


@pytest.mark.asyncio
async def test_fetch_company_scope_uses_company_endpoints():
    scope = ScopeReference(kind="company", id="comp_1", source="company")
    responses = {f"{V2}/companies/comp_1/customValues": make_response(200, {"custom_values": []})}
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        client = GHLCustomValuesClient("token")
        assert await client.fetch_custom_values(scope) == []


@pytest.mark.asyncio
async def test_company_fallback_failure_asks_for_a_location():
    scope = ScopeReference(kind="company", id="comp_1", source="company")
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route({}))
        client = GHLCustomValuesClient("token")
        with pytest.raises(ScopeUndeterminableError) as exc_info:
            await client.fetch_custom_values(scope)

    assert "please provide it explicitly" in exc_info.value.message
    assert "comp_1" in exc_info.value.message
    assert exc_info.value.status == 404
    assert "Not Found" in exc_info.value.details


@pytest.mark.asyncio
async def test_explicit_company_scope_errors_name_the_company():
    scope = ScopeReference(kind="company", id="comp_1", source="explicit")
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(
            return_value=make_response(403, {"message": "forbidden"}, reason="Forbidden")
        )
        client = GHLCustomValuesClient("token")
        with pytest.raises(UpstreamPermissionError) as exc_info:
            await client.fetch_custom_values(scope)

    assert "does not have access to Company ID comp_1" in exc_info.value.message
    assert "Location" not in exc_info.value.message


@pytest.mark.asyncio
async def test_negative_retry_setting_still_sends_every_shape(location_scope, monkeypatch):
    monkeypatch.setattr(settings, "ghl_max_retries", -1)
    responses = {
        f"{V2}/locations/loc_123/customValues": make_response(503, text="unavailable", reason="Service Unavailable"),
        f"{V2}/custom-values/": make_response(200, {"customValues": [{"key": "k", "value": "v"}]}),
    }
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        client = GHLCustomValuesClient("token")
        result = await client.fetch_custom_values(location_scope)

    assert [r.key for r in result] == ["k"]
    assert mock_client.return_value.get.call_count == 2


@pytest.mark.asyncio
async def test_transient_errors_are_retried_on_the_same_shape(location_scope, monkeypatch):
    monkeypatch.setattr(settings, "ghl_max_retries", 2)
    responses = {
        f"{V2}/locations/loc_123/customValues": [
            make_response(503, text="unavailable", reason="Service Unavailable"),
            make_response(429, text="slow down", reason="Too Many Requests"),
            make_response(200, {"customValues": [{"key": "k", "value": "v"}]}),
        ],
    }
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=route(responses))
        client = GHLCustomValuesClient("token")
        result = await client.fetch_custom_values(location_scope)

    assert [r.key for r in result] == ["k"]
    assert mock_client.return_value.get.call_count == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error_class, message", [
    (401, UpstreamAuthError, "Invalid API key or token expired"),
    (403, UpstreamPermissionError, "does not have access to Location ID loc_123"),
    (404, UpstreamNotFoundError, "Location ID loc_123 not found"),
    (400, UpstreamError, "(400)"),
])
async def test_fetch_errors_by_status(location_scope, status, error_class, message):
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(
            return_value=make_response(status, {"message": "nope"}, reason="Error")
        )
        client = GHLCustomValuesClient("token")
        with pytest.raises(error_class) as exc_info:
            await client.fetch_custom_values(location_scope)

    assert message in exc_info.value.message
    assert exc_info.value.status == status
    assert "nope" in exc_info.value.details


@pytest.mark.asyncio
async def test_fetch_shape_mismatch_everywhere(location_scope):
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(return_value=make_response(200, {"something": "else"}))
        client = GHLCustomValuesClient("token")
        with pytest.raises(UpstreamShapeMismatchError):
            await client.fetch_custom_values(location_scope)


@pytest.mark.asyncio
async def test_fetch_network_failure_everywhere(location_scope, monkeypatch):
    monkeypatch.setattr(settings, "ghl_max_retries", 0)
    with patch('httpx.AsyncClient') as mock_client:
        mock_client.return_value.get = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        client = GHLCustomValuesClient("token")
        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_custom_values(location_scope)

    assert "Could not reach GHL API" in exc_info.value.message
    assert mock_client.return_value.get.call_count == 3


def test_parse_custom_values_skips_bad_records():
    records = parse_custom_values([
        {"key": "ok", "name": None, "value": "v"},
        {"key": "", "value": "empty key"},
        {"key": 42},
        "not a dict",
        {"key": "nested", "value": {"a": 1}},
        {"key": "flag", "value": True},
    ])
    assert [r.key for r in records] == ["ok", "flag"]
    assert records[1].value == "True"
