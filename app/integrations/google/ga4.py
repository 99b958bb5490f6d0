"""Google Analytics Admin API (v1beta) client."""

import logging
from typing import Any

from app.integrations.google.base import GoogleAPIClient

logger = logging.getLogger(__name__)

SHARED_PROPERTY_NAME = "OneClickTag"


def _normalize_uri(url: str) -> str:
    return url.lower().rstrip("/").replace("http://", "https://")


class GA4AdminClient(GoogleAPIClient):
    """Async client for GA4 properties and web data streams."""

    base_url = "https://analyticsadmin.googleapis.com/v1beta"

    async def list_account_summaries(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "accountSummaries")
        return list(data.get("accountSummaries", []))

    async def list_properties(self, account_id: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", "properties", params={"filter": f"parent:accounts/{account_id}"}
        )
        return list(data.get("properties", []))

    async def create_property(
        self,
        account_id: str,
        display_name: str,
        time_zone: str = "America/New_York",
        currency_code: str = "USD",
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "properties",
            json={
                "parent": f"accounts/{account_id}",
                "displayName": display_name,
                "timeZone": time_zone,
                "currencyCode": currency_code,
            },
        )

    async def get_or_create_property(
        self, account_id: str, display_name: str = SHARED_PROPERTY_NAME
    ) -> str:
        """Return the numeric id of the named property, creating it if absent."""
        for prop in await self.list_properties(account_id):
            if prop.get("displayName") == display_name:
                return str(prop["name"]).split("/")[-1]
        logger.info("Creating GA4 property %s in account %s", display_name, account_id)
        created = await self.create_property(account_id, display_name)
        return str(created["name"]).split("/")[-1]

    async def list_data_streams(self, property_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"properties/{property_id}/dataStreams")
        return list(data.get("dataStreams", []))

    async def create_web_data_stream(
        self, property_id: str, website_url: str, display_name: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"properties/{property_id}/dataStreams",
            json={
                "type": "WEB_DATA_STREAM",
                "displayName": display_name,
                "webStreamData": {"defaultUri": website_url},
            },
        )

    async def get_or_create_web_data_stream(
        self, property_id: str, website_url: str, display_name: str
    ) -> dict[str, str]:
        """Find the web stream for ``website_url`` (matched on defaultUri) or create it.

        Returns:
            ``{"data_stream_id", "measurement_id"}``
        """
        target = _normalize_uri(website_url)
        for stream in await self.list_data_streams(property_id):
            web = stream.get("webStreamData") or {}
            if stream.get("type") == "WEB_DATA_STREAM" and _normalize_uri(
                web.get("defaultUri", "")
            ) == target:
                return {
                    "data_stream_id": str(stream["name"]).split("/")[-1],
                    "measurement_id": web.get("measurementId", ""),
                }

        created = await self.create_web_data_stream(property_id, website_url, display_name)
        return {
            "data_stream_id": str(created["name"]).split("/")[-1],
            "measurement_id": (created.get("webStreamData") or {}).get("measurementId", ""),
        }
