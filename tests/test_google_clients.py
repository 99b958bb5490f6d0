"""Tests for the Google REST clients with the HTTP layer mocked out."""

from typing import Any
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.integrations.google import oauth
from app.integrations.google.ads import GoogleAdsClient, parse_send_to
from app.integrations.google.base import GoogleAPIError
from app.integrations.google.ga4 import GA4AdminClient
from app.integrations.google.gtm import ALL_PAGES_TRIGGER, GTMClient, WorkspaceRef, exists
from app.models.oauth_token import TokenScope

REF = WorkspaceRef("100", "200", "3")


class TestGoogleAPIError:
    def test_google_error_body(self) -> None:
        response = httpx.Response(
            429,
            json={
                "error": {
                    "code": 429,
                    "message": "Quota exceeded for quota metric 'Queries per 100 seconds'",
                    "status": "RESOURCE_EXHAUSTED",
                    "errors": [{"reason": "rateLimitExceeded"}],
                }
            },
        )
        error = GoogleAPIError.from_response(response)
        assert error.status_code == 429
        assert error.reason == "RESOURCE_EXHAUSTED rateLimitExceeded"
        assert "per 100 seconds" in error.message

    def test_ads_list_wrapped_body(self) -> None:
        response = httpx.Response(400, json=[{"error": {"message": "bad", "status": "INVALID_ARGUMENT"}}])
        error = GoogleAPIError.from_response(response)
        assert error.reason == "INVALID_ARGUMENT"
        assert error.message == "bad"

    def test_plain_text_body(self) -> None:
        error = GoogleAPIError.from_response(httpx.Response(502, text="Bad Gateway"))
        assert error.reason is None
        assert error.message == "Bad Gateway"
        assert not error.not_found


class TestExists:
    async def test_found(self) -> None:
        assert await exists(AsyncMock(return_value={"tagId": "1"})()) is True

    async def test_not_found(self) -> None:
        assert await exists(AsyncMock(side_effect=GoogleAPIError(404, "gone"))()) is False

    async def test_other_errors_propagate(self) -> None:
        with pytest.raises(GoogleAPIError):
            await exists(AsyncMock(side_effect=GoogleAPIError(500, "boom"))())


class TestGTMClient:
    async def test_existing_container_is_reused(self) -> None:
        client = GTMClient("token")
        request = AsyncMock(return_value={"container": [{"containerId": "200", "name": "OneClickTag - Acme"}]})
        with patch.object(client, "_request", request):
            container = await client.get_or_create_container("100", "OneClickTag - Acme")

        assert container["containerId"] == "200"
        request.assert_awaited_once_with("GET", "accounts/100/containers")

    async def test_missing_workspace_is_created(self) -> None:
        client = GTMClient("token")
        request = AsyncMock(side_effect=[{"workspace": [{"workspaceId": "1", "name": "Default Workspace"}]}, {"workspaceId": "7"}])
        with patch.object(client, "_request", request):
            ref = await client.get_or_create_workspace("100", "200")

        assert ref == WorkspaceRef("100", "200", "7")
        assert ref.path == "accounts/100/containers/200/workspaces/7"
        method, path = request.await_args.args
        assert (method, path) == ("POST", "accounts/100/containers/200/workspaces")

    async def test_workspace_essentials_only_fill_gaps(self) -> None:
        client = GTMClient("token")
        with (
            patch.object(client, "list_built_in_variables", AsyncMock(return_value=[{"type": "pageUrl"}])),
            patch.object(client, "enable_built_in_variables", AsyncMock()) as enable,
            patch.object(client, "get_or_create_trigger_by_name", AsyncMock(return_value={"triggerId": 5})) as trigger,
            patch.object(client, "get_or_create_tag_by_name", AsyncMock(return_value={"tagId": 6})),
            patch.object(client, "list_variables", AsyncMock(return_value=[{"name": "Page Title - OneClickTag"}])),
            patch.object(client, "create_variable", AsyncMock()) as create_variable,
        ):
            result = await client.setup_workspace_essentials(REF)

        enabled = enable.await_args.args[1]
        assert "pageUrl" not in enabled
        assert "clickElement" in enabled
        assert trigger.await_args.args[1]["name"] == ALL_PAGES_TRIGGER
        create_variable.assert_not_awaited()
        assert result == {
            "enabledVariables": enabled,
            "allPagesTriggerId": "5",
            "conversionLinkerTagId": "6",
        }


class TestGA4Client:
    async def test_data_stream_matched_on_default_uri(self) -> None:
        client = GA4AdminClient("token")
        streams: dict[str, Any] = {
            "dataStreams": [
                {
                    "name": "properties/9/dataStreams/44",
                    "type": "WEB_DATA_STREAM",
                    "webStreamData": {"defaultUri": "http://ACME.example/", "measurementId": "G-ACME"},
                }
            ]
        }
        with patch.object(client, "_request", AsyncMock(return_value=streams)) as request:
            stream = await client.get_or_create_web_data_stream("9", "https://acme.example", "Acme")

        assert stream == {"data_stream_id": "44", "measurement_id": "G-ACME"}
        request.assert_awaited_once()

    async def test_property_created_when_missing(self) -> None:
        client = GA4AdminClient("token")
        request = AsyncMock(side_effect=[{"properties": []}, {"name": "properties/321"}])
        with patch.object(client, "_request", request):
            assert await client.get_or_create_property("55") == "321"


class TestGoogleAdsClient:
    def test_headers(self) -> None:
        client = GoogleAdsClient("token", login_customer_id="999")
        assert client.headers["login-customer-id"] == "999"
        assert "developer-token" in client.headers

    async def test_accessible_customers(self) -> None:
        client = GoogleAdsClient("token")
        with patch.object(client, "_request", AsyncMock(return_value={"resourceNames": ["customers/1", "customers/2"]})):
            assert await client.list_accessible_customers() == ["1", "2"]

    async def test_account_details(self) -> None:
        client = GoogleAdsClient("token")
        rows = [{"customer": {"id": "1", "descriptiveName": "Acme", "currencyCode": "EUR", "manager": True}}]
        with patch.object(client, "search", AsyncMock(return_value=rows)):
            details = await client.get_account_details("1")
        assert details["name"] == "Acme"
        assert details["manager"] is True

    def test_parse_send_to(self) -> None:
        snippets = [{"eventSnippet": "gtag('event', 'conversion', {'send_to': 'AW-123456789/AbC-D_efG'});"}]
        assert parse_send_to(snippets) == ("123456789", "AbC-D_efG")
        assert parse_send_to([{"eventSnippet": "nothing"}]) == (None, None)


class TestOAuth:
    def test_auth_url(self) -> None:
        url = oauth.build_auth_url("state-123", [TokenScope.GTM])
        query = parse_qs(urlparse(url).query)
        assert query["state"] == ["state-123"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        scopes = query["scope"][0].split(" ")
        assert "openid" in scopes
        assert "https://www.googleapis.com/auth/tagmanager.edit.containers" in scopes
        assert "https://www.googleapis.com/auth/adwords" not in scopes
