from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from boardtask_graph.core.errors import ApiError, GraphValidationError
from boardtask_graph.core.model import Edge, GraphSnapshot, Node, NodeType, Slot, TaskStatus
from boardtask_graph.core.validate.validate_graph import (
    parse_edge,
    parse_node,
    parse_node_type,
    parse_slot,
    parse_task_status,
)


log = logging.getLogger(__name__)


class BoardtaskClient:
    """Async client for the Boardtask project graph API.

    Every call is a single attempt: non-2xx responses and transport failures
    raise ApiError and nothing is retried. Timeouts come from the httpx client.
    """

    def __init__(
        self,
        base_url: str,
        project_id: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not project_id:
            raise ValueError("project_id is required")
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json", "Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BoardtaskClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def _project_path(self) -> str:
        return f"/api/projects/{self.project_id}"

    # Reads

    async def fetch_graph(self) -> GraphSnapshot:
        data = await self._request("GET", f"{self._project_path}/graph")
        nodes = self._parse_items(data, "nodes", parse_node)
        edges = self._parse_items(data, "edges", parse_edge)
        return GraphSnapshot(nodes=nodes, edges=edges)

    async def fetch_node_types(self) -> list[NodeType]:
        data = await self._request("GET", "/api/node-types")
        return self._parse_items(data, "node_types", parse_node_type)

    async def fetch_task_statuses(self) -> list[TaskStatus]:
        data = await self._request("GET", "/api/task-statuses")
        return self._parse_items(data, "task_statuses", parse_task_status)

    async def fetch_slots(self) -> list[Slot]:
        data = await self._request("GET", f"{self._project_path}/slots")
        return self._parse_items(data, "slots", parse_slot)

    # Nodes

    async def create_node(
        self,
        *,
        title: str,
        node_type_id: str,
        description: str = "",
        status_id: Optional[str] = None,
        slot_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Node:
        body: dict[str, Any] = {
            "node_type_id": node_type_id,
            "title": title,
            "description": description,
        }
        if status_id is not None:
            body["status_id"] = status_id
        if slot_id is not None:
            body["slot_id"] = slot_id
        if group_id is not None:
            body["group_id"] = group_id
        data = await self._request("POST", f"{self._project_path}/nodes", json=body)
        return self._parse_one(data, parse_node, "node")

    async def update_node(self, node_id: str, fields: dict[str, Any]) -> Node:
        """PATCH a node. Omitted keys stay unchanged; a None estimate clears it."""
        data = await self._request("PATCH", f"{self._project_path}/nodes/{node_id}", json=fields)
        return self._parse_one(data, parse_node, "node")

    async def delete_node(self, node_id: str) -> None:
        await self._request("DELETE", f"{self._project_path}/nodes/{node_id}")

    # Edges

    async def create_edge(self, parent_id: str, child_id: str) -> Edge:
        body = {"parent_id": parent_id, "child_id": child_id}
        data = await self._request("POST", f"{self._project_path}/edges", json=body)
        if data is None:
            return Edge(parent_id=parent_id, child_id=child_id)
        return self._parse_one(data, parse_edge, "edge")

    async def delete_edge(self, parent_id: str, child_id: str) -> None:
        body = {"parent_id": parent_id, "child_id": child_id}
        await self._request("DELETE", f"{self._project_path}/edges", json=body)

    async def insert_between(
        self,
        parent_id: str,
        child_id: str,
        *,
        title: str,
        node_type_id: str,
        description: Optional[str] = None,
        status_id: Optional[str] = None,
        slot_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Node:
        """Create a node on the edge parent -> child, rewiring it to parent -> new -> child."""
        body: dict[str, Any] = {
            "parent_id": parent_id,
            "child_id": child_id,
            "node_type_id": node_type_id,
            "title": title,
        }
        for key, value in (
            ("description", description),
            ("status_id", status_id),
            ("slot_id", slot_id),
            ("group_id", group_id),
        ):
            if value is not None:
                body[key] = value
        data = await self._request(
            "POST", f"{self._project_path}/edges/insert-between", json=body
        )
        return self._parse_one(data, parse_node, "node")

    # Slots

    async def create_slot(self, name: str, sort_order: Optional[int] = None) -> Slot:
        body: dict[str, Any] = {"name": name}
        if sort_order is not None:
            body["sort_order"] = sort_order
        data = await self._request("POST", f"{self._project_path}/slots", json=body)
        return self._parse_one(data, parse_slot, "slot")

    async def update_slot(
        self, slot_id: str, *, name: Optional[str] = None, sort_order: Optional[int] = None
    ) -> Slot:
        body: dict[str, Any] = {}
        if name is not None:
            body["name"] = name
        if sort_order is not None:
            body["sort_order"] = sort_order
        data = await self._request("PATCH", f"{self._project_path}/slots/{slot_id}", json=body)
        return self._parse_one(data, parse_slot, "slot")

    async def delete_slot(self, slot_id: str) -> None:
        await self._request("DELETE", f"{self._project_path}/slots/{slot_id}")

    # Transport

    async def _request(self, method: str, url: str, *, json: Any = None) -> Any:
        where = f"{method} {url}"
        log.debug("request %s", where)
        try:
            response = await self.client.request(method, url, json=json)
        except httpx.HTTPError as e:
            log.warning("transport failure on %s: %s", where, e)
            raise ApiError(code="E_API_TRANSPORT", message=str(e) or type(e).__name__, path=where) from e
        return self._handle_response(response, where)

    def _handle_response(self, response: httpx.Response, where: str) -> Any:
        log.debug("response %s -> %d", where, response.status_code)
        if response.status_code >= 400:
            message = _error_message(response)
            log.warning("%s failed with %d: %s", where, response.status_code, message)
            raise ApiError(
                code="E_API_HTTP",
                message=message,
                path=where,
                status=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                code="E_API_DECODE",
                message="invalid JSON in response",
                path=where,
                status=response.status_code,
            ) from e

    def _parse_items(self, data: Any, key: str, parse) -> list:
        if not isinstance(data, dict) or not isinstance(data.get(key), list):
            raise ApiError(code="E_API_DECODE", message=f"response is missing '{key}'", path=key)
        try:
            return [parse(raw, path=f"{key}[{i}]") for i, raw in enumerate(data[key])]
        except GraphValidationError as e:
            raise ApiError(code="E_API_DECODE", message=e.message, path=e.path) from e

    def _parse_one(self, data: Any, parse, what: str):
        try:
            return parse(data, path=what)
        except GraphValidationError as e:
            raise ApiError(code="E_API_DECODE", message=e.message, path=e.path) from e


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    text = response.text.strip()
    return text or f"API request failed ({response.status_code})"
