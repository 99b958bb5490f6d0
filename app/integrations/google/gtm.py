"""Google Tag Manager API v2 client."""

import logging
from dataclasses import dataclass
from typing import Any

from app.integrations.google.base import GoogleAPIClient, GoogleAPIError

logger = logging.getLogger(__name__)

ONECLICKTAG_WORKSPACE = "OneClickTag"
ALL_PAGES_TRIGGER = "All Pages - OneClickTag"
CONVERSION_LINKER_TAG = "Conversion Linker - OneClickTag"
PAGE_TITLE_VARIABLE = "Page Title - OneClickTag"

# Built-in variables the generated triggers and tags reference
ESSENTIAL_BUILT_IN_VARIABLES = [
    "pageUrl",
    "pagePath",
    "pageHostname",
    "referrer",
    "event",
    "clickElement",
    "clickClasses",
    "clickId",
    "clickText",
    "clickUrl",
    "formElement",
    "formId",
    "formClasses",
    "formText",
]


@dataclass(frozen=True)
class WorkspaceRef:
    """Fully-qualified GTM workspace location."""

    account_id: str
    container_id: str
    workspace_id: str

    @property
    def path(self) -> str:
        return (
            f"accounts/{self.account_id}/containers/{self.container_id}"
            f"/workspaces/{self.workspace_id}"
        )


class GTMClient(GoogleAPIClient):
    """Async client for the Tag Manager REST API."""

    base_url = "https://tagmanager.googleapis.com/tagmanager/v2"

    # === Accounts & containers ===

    async def list_accounts(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "accounts")
        return list(data.get("account", []))

    async def list_containers(self, account_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"accounts/{account_id}/containers")
        return list(data.get("container", []))

    async def create_container(self, account_id: str, name: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"accounts/{account_id}/containers",
            json={"name": name, "usageContext": ["web"]},
        )

    async def get_or_create_container(self, account_id: str, name: str) -> dict[str, Any]:
        """Return the container named ``name``, creating it if absent."""
        for container in await self.list_containers(account_id):
            if container.get("name") == name:
                return container
        logger.info("Creating GTM container %s in account %s", name, account_id)
        return await self.create_container(account_id, name)

    # === Workspaces ===

    async def list_workspaces(self, account_id: str, container_id: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", f"accounts/{account_id}/containers/{container_id}/workspaces"
        )
        return list(data.get("workspace", []))

    async def create_workspace(
        self, account_id: str, container_id: str, name: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"accounts/{account_id}/containers/{container_id}/workspaces",
            json={"name": name, "description": "Managed by OneClickTag"},
        )

    async def get_workspace(self, ref: WorkspaceRef) -> dict[str, Any]:
        return await self._request("GET", ref.path)

    async def get_or_create_workspace(
        self, account_id: str, container_id: str, name: str = ONECLICKTAG_WORKSPACE
    ) -> WorkspaceRef:
        """Find the OneClickTag workspace in a container, creating it if absent."""
        for workspace in await self.list_workspaces(account_id, container_id):
            if workspace.get("name") == name:
                return WorkspaceRef(account_id, container_id, str(workspace["workspaceId"]))
        created = await self.create_workspace(account_id, container_id, name)
        return WorkspaceRef(account_id, container_id, str(created["workspaceId"]))

    # === Triggers ===

    async def list_triggers(self, ref: WorkspaceRef) -> list[dict[str, Any]]:
        data = await self._request("GET", f"{ref.path}/triggers")
        return list(data.get("trigger", []))

    async def get_trigger(self, ref: WorkspaceRef, trigger_id: str) -> dict[str, Any]:
        return await self._request("GET", f"{ref.path}/triggers/{trigger_id}")

    async def create_trigger(self, ref: WorkspaceRef, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"{ref.path}/triggers", json=body)

    async def update_trigger(
        self, ref: WorkspaceRef, trigger_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request("PUT", f"{ref.path}/triggers/{trigger_id}", json=body)

    async def delete_trigger(self, ref: WorkspaceRef, trigger_id: str) -> None:
        await self._request("DELETE", f"{ref.path}/triggers/{trigger_id}")

    async def get_or_create_trigger_by_name(
        self, ref: WorkspaceRef, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Reuse a trigger with the same name so retried jobs don't duplicate it."""
        for trigger in await self.list_triggers(ref):
            if trigger.get("name") == body["name"]:
                return trigger
        return await self.create_trigger(ref, body)

    # === Tags ===

    async def list_tags(self, ref: WorkspaceRef) -> list[dict[str, Any]]:
        data = await self._request("GET", f"{ref.path}/tags")
        return list(data.get("tag", []))

    async def get_tag(self, ref: WorkspaceRef, tag_id: str) -> dict[str, Any]:
        return await self._request("GET", f"{ref.path}/tags/{tag_id}")

    async def create_tag(self, ref: WorkspaceRef, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"{ref.path}/tags", json=body)

    async def update_tag(
        self, ref: WorkspaceRef, tag_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request("PUT", f"{ref.path}/tags/{tag_id}", json=body)

    async def delete_tag(self, ref: WorkspaceRef, tag_id: str) -> None:
        await self._request("DELETE", f"{ref.path}/tags/{tag_id}")

    async def get_or_create_tag_by_name(
        self, ref: WorkspaceRef, body: dict[str, Any]
    ) -> dict[str, Any]:
        for tag in await self.list_tags(ref):
            if tag.get("name") == body["name"]:
                return tag
        return await self.create_tag(ref, body)

    # === Variables ===

    async def list_built_in_variables(self, ref: WorkspaceRef) -> list[dict[str, Any]]:
        data = await self._request("GET", f"{ref.path}/built_in_variables")
        return list(data.get("builtInVariable", []))

    async def enable_built_in_variables(self, ref: WorkspaceRef, types: list[str]) -> None:
        await self._request(
            "POST",
            f"{ref.path}/built_in_variables",
            params=[("type", t) for t in types],
        )

    async def list_variables(self, ref: WorkspaceRef) -> list[dict[str, Any]]:
        data = await self._request("GET", f"{ref.path}/variables")
        return list(data.get("variable", []))

    async def create_variable(self, ref: WorkspaceRef, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"{ref.path}/variables", json=body)

    # === Workspace essentials ===

    async def setup_workspace_essentials(self, ref: WorkspaceRef) -> dict[str, Any]:
        """Make a fresh workspace usable by generated trackings.

        Enables the built-in click/form/page variables and creates the shared
        pageview trigger, the conversion linker tag and a page title variable.
        Each object is created only if missing, so this is safe to repeat.
        """
        enabled = {v.get("type") for v in await self.list_built_in_variables(ref)}
        missing = [t for t in ESSENTIAL_BUILT_IN_VARIABLES if t not in enabled]
        if missing:
            await self.enable_built_in_variables(ref, missing)

        all_pages = await self.get_or_create_trigger_by_name(
            ref, {"name": ALL_PAGES_TRIGGER, "type": "pageview"}
        )
        linker = await self.get_or_create_tag_by_name(
            ref,
            {
                "name": CONVERSION_LINKER_TAG,
                "type": "gclidw",
                "firingTriggerId": [str(all_pages["triggerId"])],
            },
        )

        variables = await self.list_variables(ref)
        if not any(v.get("name") == PAGE_TITLE_VARIABLE for v in variables):
            await self.create_variable(
                ref,
                {
                    "name": PAGE_TITLE_VARIABLE,
                    "type": "jsm",
                    "parameter": [
                        {
                            "type": "template",
                            "key": "javascript",
                            "value": "function() { return document.title; }",
                        }
                    ],
                },
            )

        return {
            "enabledVariables": missing,
            "allPagesTriggerId": str(all_pages["triggerId"]),
            "conversionLinkerTagId": str(linker["tagId"]),
        }


async def exists(call: Any) -> bool:
    """Await a GET coroutine, mapping a 404 to False."""
    try:
        await call
    except GoogleAPIError as e:
        if e.not_found:
            return False
        raise
    return True
