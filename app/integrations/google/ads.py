"""Google Ads REST API client (conversion actions, labels, accounts)."""

import logging
import re
from typing import Any

from app.core.config import settings
from app.integrations.google.base import GoogleAPIClient

logger = logging.getLogger(__name__)

ONECLICKTAG_LABEL = "OneClickTag"

# 'send_to': 'AW-123456789/AbC-D_efG-h12_34-567'
_SEND_TO_RE = re.compile(r"AW-(\d+)/([\w-]+)")


def parse_send_to(tag_snippets: list[dict[str, Any]]) -> tuple[str | None, str | None]:
    """Extract (conversion_id, conversion_label) from conversion tag snippets."""
    for snippet in tag_snippets:
        for key in ("eventSnippet", "globalSiteTag"):
            match = _SEND_TO_RE.search(snippet.get(key) or "")
            if match:
                return match.group(1), match.group(2)
    return None, None


class GoogleAdsClient(GoogleAPIClient):
    """Async client for the subset of the Google Ads API used by sync jobs."""

    def __init__(self, access_token: str, login_customer_id: str | None = None) -> None:
        super().__init__(access_token)
        self.base_url = f"https://googleads.googleapis.com/{settings.google_ads_api_version}"
        self.headers["developer-token"] = settings.google_ads_developer_token
        if login_customer_id:
            self.headers["login-customer-id"] = login_customer_id

    async def search(self, customer_id: str, query: str) -> list[dict[str, Any]]:
        data = await self._request(
            "POST", f"customers/{customer_id}/googleAds:search", json={"query": query}
        )
        return list(data.get("results", []))

    # === Accounts ===

    async def list_accessible_customers(self) -> list[str]:
        data = await self._request("GET", "customers:listAccessibleCustomers")
        return [name.split("/")[-1] for name in data.get("resourceNames", [])]

    async def get_account_details(self, customer_id: str) -> dict[str, Any]:
        rows = await self.search(
            customer_id,
            "SELECT customer.id, customer.descriptive_name, customer.currency_code, "
            "customer.time_zone, customer.manager FROM customer LIMIT 1",
        )
        if not rows:
            return {"id": customer_id}
        customer = rows[0].get("customer", {})
        return {
            "id": str(customer.get("id", customer_id)),
            "name": customer.get("descriptiveName"),
            "currency": customer.get("currencyCode"),
            "time_zone": customer.get("timeZone"),
            "manager": bool(customer.get("manager", False)),
        }

    # === Labels ===

    async def get_or_create_label(self, customer_id: str, name: str = ONECLICKTAG_LABEL) -> str:
        """Return the resource name of the named label, creating it if absent."""
        safe_name = name.replace("'", "\\'")
        rows = await self.search(
            customer_id,
            f"SELECT label.resource_name, label.name FROM label WHERE label.name = '{safe_name}'",
        )
        if rows:
            return str(rows[0]["label"]["resourceName"])
        data = await self._request(
            "POST",
            f"customers/{customer_id}/labels:mutate",
            json={"operations": [{"create": {"name": name}}]},
        )
        return str(data["results"][0]["resourceName"])

    # === Conversion actions ===

    async def create_conversion_action(
        self,
        customer_id: str,
        name: str,
        category: str = "DEFAULT",
        default_value: float | None = None,
    ) -> dict[str, str | None]:
        """Create a WEBPAGE conversion action and resolve its tag id/label.

        Returns:
            ``{"conversion_action_id", "conversion_id", "conversion_label"}``
        """
        action: dict[str, Any] = {
            "name": name,
            "category": category,
            "type": "WEBPAGE",
            "status": "ENABLED",
        }
        if default_value is not None:
            action["valueSettings"] = {"defaultValue": default_value, "alwaysUseDefaultValue": False}

        data = await self._request(
            "POST",
            f"customers/{customer_id}/conversionActions:mutate",
            json={"operations": [{"create": action}]},
        )
        resource_name = str(data["results"][0]["resourceName"])
        action_id = resource_name.split("/")[-1]

        details = await self.get_conversion_action(customer_id, action_id)
        conversion_id, label = parse_send_to((details or {}).get("tagSnippets", []))
        return {
            "conversion_action_id": action_id,
            "conversion_id": conversion_id,
            "conversion_label": label,
        }

    async def get_conversion_action(
        self, customer_id: str, conversion_action_id: str
    ) -> dict[str, Any] | None:
        """Fetch one conversion action, or None if it does not exist."""
        rows = await self.search(
            customer_id,
            "SELECT conversion_action.id, conversion_action.name, conversion_action.status, "
            "conversion_action.tag_snippets FROM conversion_action "
            f"WHERE conversion_action.id = {int(conversion_action_id)}",
        )
        if not rows:
            return None
        action: dict[str, Any] = rows[0].get("conversionAction", {})
        return action

    async def update_conversion_action(
        self,
        customer_id: str,
        conversion_action_id: str,
        name: str,
        default_value: float | None = None,
    ) -> None:
        update: dict[str, Any] = {
            "resourceName": f"customers/{customer_id}/conversionActions/{conversion_action_id}",
            "name": name,
        }
        mask = ["name"]
        if default_value is not None:
            update["valueSettings"] = {"defaultValue": default_value}
            mask.append("value_settings.default_value")
        await self._request(
            "POST",
            f"customers/{customer_id}/conversionActions:mutate",
            json={"operations": [{"update": update, "updateMask": ",".join(mask)}]},
        )

    async def remove_conversion_action(self, customer_id: str, conversion_action_id: str) -> None:
        await self._request(
            "POST",
            f"customers/{customer_id}/conversionActions:mutate",
            json={
                "operations": [
                    {"remove": f"customers/{customer_id}/conversionActions/{conversion_action_id}"}
                ]
            },
        )
