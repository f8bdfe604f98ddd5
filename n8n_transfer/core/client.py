"""HTTP client for the n8n public API.

Each method performs a single request; retries are owned by the transfer
manager. HTTP and transport failures are raised as ``N8NClientError``.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

import httpx

from n8n_transfer.core.errors import N8NClientError
from n8n_transfer.observability.logging import get_logger, mask_url

logger = get_logger(__name__)

API_PREFIX = "/api/v1"

# Fields accepted by POST /workflows; everything else is instance-specific
WORKFLOW_PAYLOAD_FIELDS = ("name", "nodes", "connections", "settings", "staticData")


@runtime_checkable
class WorkflowClient(Protocol):
    """Collaborator surface the transfer manager needs from a client."""

    async def list_workflows(self) -> List[Dict[str, Any]]: ...

    async def create_workflow(
        self,
        workflow: Mapping[str, Any],
        tag_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]: ...

    async def list_tags(self) -> List[Dict[str, Any]]: ...

    async def create_tag(self, name: str) -> Dict[str, Any]: ...

    async def test_connection(self) -> Dict[str, Any]: ...


def clean_workflow_payload(workflow: Mapping[str, Any]) -> Dict[str, Any]:
    """Build a create payload from a source workflow.

    Returns a new dict; the source workflow is left untouched.
    """
    payload = {key: workflow[key] for key in WORKFLOW_PAYLOAD_FIELDS if key in workflow}
    if payload.get("settings") is None:
        payload["settings"] = {}
    return payload


class N8NClient:
    """Async client for one n8n instance.

    Example:
        >>> async with N8NClient("https://n8n.example.com", api_key) as client:
        ...     workflows = await client.list_workflows()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        page_size: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        self._base_url = base_url.rstrip("/")
        self.page_size = page_size
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "X-N8N-API-KEY": api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "N8NClient":
        """Create a client from ``InstanceSettings``.

        Raises:
            ValueError: If URL or API key is missing
        """
        if not settings.is_configured:
            raise ValueError("Instance URL and API key must be configured")
        return cls(
            base_url=settings.url,
            api_key=settings.api_key.get_secret_value(),
            timeout=settings.timeout,
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def label(self) -> str:
        """Masked base URL, safe for logs and reports."""
        return mask_url(self._base_url)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> "N8NClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Execute one HTTP request with standardized error handling.

        Raises:
            N8NClientError: On non-2xx responses and transport failures
        """
        try:
            response = await self._client.request(
                method=method,
                url=f"{API_PREFIX}{endpoint}",
                json=json_data,
                params=params,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = e.response.json()
                if isinstance(detail, dict):
                    detail = detail.get("message", detail)
            except ValueError:
                detail = e.response.text
            raise N8NClientError(
                status_code=e.response.status_code,
                message=f"n8n API Error ({e.response.status_code}): {detail}",
                context=str(e),
            ) from e
        except httpx.TimeoutException as e:
            raise N8NClientError(
                status_code=503,
                message="Request timed out",
                context=str(e),
                timeout=True,
            ) from e
        except httpx.RequestError as e:
            raise N8NClientError(
                status_code=503,
                message="Network/Connection Failure",
                context=str(e),
                transport=True,
            ) from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise N8NClientError(
                status_code=response.status_code,
                message="Invalid JSON in n8n API response",
                context=str(e),
            ) from e

    async def _paginate(self, endpoint: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"limit": self.page_size}
            if cursor:
                params["cursor"] = cursor
            body = await self.request("GET", endpoint, params=params)
            if isinstance(body, list):
                items.extend(body)
                return items
            items.extend(body.get("data") or [])
            cursor = body.get("nextCursor")
            if not cursor:
                return items

    async def list_workflows(self) -> List[Dict[str, Any]]:
        """List every workflow of the instance, following pagination."""
        workflows = await self._paginate("/workflows")
        logger.info("workflows_listed", url=self.label, count=len(workflows))
        return workflows

    async def create_workflow(
        self,
        workflow: Mapping[str, Any],
        tag_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Create a workflow and tag it.

        Args:
            workflow: Source workflow; only creatable fields are sent
            tag_ids: Target instance tag ids applied after creation

        Returns:
            The created workflow as returned by the API

        Raises:
            ValueError: If the workflow has no name or no node list
            N8NClientError: On API failure
        """
        if not isinstance(workflow, Mapping) or not workflow.get("name"):
            raise ValueError("Workflow name is required")
        if not isinstance(workflow.get("nodes"), list):
            raise ValueError("Workflow nodes must be a list")

        created = await self.request("POST", "/workflows", json_data=clean_workflow_payload(workflow))
        logger.info("workflow_created", url=self.label, name=workflow["name"], id=created.get("id"))

        if tag_ids and created.get("id"):
            tags = await self.request(
                "PUT",
                f"/workflows/{created['id']}/tags",
                json_data=[{"id": tag_id} for tag_id in tag_ids],
            )
            created = {**created, "tags": tags}
        return created

    async def list_tags(self) -> List[Dict[str, Any]]:
        return await self._paginate("/tags")

    async def create_tag(self, name: str) -> Dict[str, Any]:
        if not name:
            raise ValueError("Tag name is required")
        tag = await self.request("POST", "/tags", json_data={"name": name})
        logger.info("tag_created", url=self.label, name=name, id=tag.get("id"))
        return tag

    async def test_connection(self) -> Dict[str, Any]:
        """Check connectivity and credentials.

        Returns:
            ``{"success": True, "message": ...}`` or
            ``{"success": False, "error": ..., "suggestion": ..., "code": ...}``
        """
        try:
            await self.request("GET", "/workflows", params={"limit": 1})
        except N8NClientError as e:
            if e.status_code in (401, 403):
                error, suggestion = "Authentication failed", "Check that the API key is correct"
            elif e.timeout:
                error, suggestion = "Connection timed out", "Check network connectivity and firewall rules"
            elif e.transport:
                error, suggestion = "Could not connect to server", "Check that the URL is correct and the server is running"
            else:
                error, suggestion = e.message, ""
            logger.error("connection_test_failed", url=self.label, error=error, status=e.status_code)
            return {"success": False, "error": error, "suggestion": suggestion, "code": e.status_code}

        logger.info("connection_test_passed", url=self.label)
        return {"success": True, "message": "Connection successful"}
