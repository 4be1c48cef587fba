"""HTTP client for a JanusGraph-style Gremlin script endpoint."""

import base64
from collections.abc import Mapping
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from souschef.config import get_settings
from souschef.graph.base import (
    GraphClientError,
    GraphExecutionError,
    GraphTransportError,
    ScriptResponse,
)
from souschef.graph.models import ElementId, PropertyValue
from souschef.logging_config import get_logger

logger = get_logger(__name__)


def escape_string_value(value: str) -> str:
    """
    Escape a string for embedding inside a double-quoted Groovy literal.

    Order matters: already escaped quotes first, then all quotes, then
    dollar signs so the script engine does not interpolate `${...}`.
    This only mitigates textual injection; prefer bindings where possible.
    """
    value = value.replace('\\"', '\\\\"')
    value = value.replace('"', '\\"')
    return value.replace("$", "\\$")


def format_literal(value: PropertyValue) -> str:
    """Render a property value as a script literal."""
    if isinstance(value, str):
        return f'"{escape_string_value(value)}"'
    # bool before int: True is an int too
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise TypeError(f"Unsupported property value type: {type(value).__name__}")


def format_element_id(element_id: ElementId) -> str:
    """Numeric ids are inlined, string ids (e.g. edge relation ids) are quoted."""
    if isinstance(element_id, int) and not isinstance(element_id, bool):
        return str(element_id)
    return f'"{escape_string_value(str(element_id))}"'


def _property_clauses(properties: Mapping[str, PropertyValue] | None) -> str:
    clauses = ""
    for name, value in (properties or {}).items():
        clauses += f', "{name}", {format_literal(value)}'
    return clauses


class GremlinClient:
    """Submits Gremlin scripts to a remote graph service over authenticated HTTP."""

    DEFAULT_TIMEOUT = 30.0
    BACKOFF_BASE = 1
    BACKOFF_MAX = 10

    def __init__(
        self,
        url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.url = url or settings.janusgraph_url
        self.username = username if username is not None else settings.janusgraph_username
        self.password = password if password is not None else settings.janusgraph_password
        self.timeout = timeout or settings.janusgraph_timeout or self.DEFAULT_TIMEOUT
        self.max_attempts = max(1, max_attempts or settings.janusgraph_max_attempts)
        credentials = f"{self.username}:{self.password}".encode()
        self.auth_header = "Basic " + base64.b64encode(credentials).decode("ascii")
        self.graph_id: str | None = None
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": self.auth_header,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post(self, body: dict[str, Any]) -> ScriptResponse:
        """POST a script body and parse the status envelope."""
        client = await self._get_client()

        @retry(
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.BACKOFF_BASE, max=self.BACKOFF_MAX),
            reraise=True,
        )
        async def _do_request() -> httpx.Response:
            return await client.post(self.url, json=body)

        try:
            response = await _do_request()
        except httpx.HTTPError as e:
            logger.error(f"Request to {self.url} failed: {e}")
            raise GraphTransportError(f"Request to graph service failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            detail = response.text[:500] if response.text else "No details"
            logger.error(f"Non-JSON response {response.status_code} from {self.url}: {detail}")
            raise GraphTransportError(
                "Graph service returned a non-JSON response",
                status_code=response.status_code,
                response=detail,
            ) from e

        return ScriptResponse.from_body(payload)

    # =========================================================================
    # Graph provisioning
    # =========================================================================

    async def graph_exists(self, graph_id: str) -> bool:
        """Open the named graph; any failure means it does not exist."""
        logger.info(f"Checking if graph exists with id '{graph_id}'...")
        script = f'def graph=ConfiguredGraphFactory.open("{escape_string_value(graph_id)}");0;'
        try:
            response = await self._post({"gremlin": script})
        except Exception as e:
            logger.warning(f"Opening graph '{graph_id}' failed: {e}")
            return False
        return response.is_success

    async def get_or_create_graph(self, graph_id: str) -> bool:
        """
        Create the named graph unless it already exists.

        Returns True when the graph existed or was created with status 200.
        Nothing is rolled back on failure; call graph_exists() to confirm.
        """
        logger.info(f"Getting or creating graph with id '{graph_id}'...")
        if await self.graph_exists(graph_id):
            logger.info("Graph already exists.")
            return True

        logger.info("Graph does not exist. Creating new graph...")
        script = f'def graph=ConfiguredGraphFactory.create("{escape_string_value(graph_id)}");0;'
        response = await self._post({"gremlin": script})
        if not response.is_success:
            logger.error(f"Creating graph '{graph_id}' returned status {response.status_code}")
        return response.is_success

    def bind_graph(self, graph_id: str) -> None:
        """Set the graph opened by scripts that do not name one explicitly."""
        self.graph_id = graph_id

    # =========================================================================
    # Script execution
    # =========================================================================

    async def execute(
        self,
        script: str,
        graph_id: str | None = None,
        bindings: Mapping[str, Any] | None = None,
    ) -> ScriptResponse:
        """
        Run a script against a graph.

        Args:
            script: Gremlin script; `graph` is defined for it.
            graph_id: Graph to open. Defaults to the bound graph.
            bindings: Optional named parameters sent alongside the script.

        Returns:
            The parsed response envelope.

        Raises:
            GraphExecutionError: If the status code is not 200.
        """
        graph_id = graph_id or self.graph_id
        if graph_id is None:
            raise GraphClientError("No graph bound. Call bind_graph() or pass graph_id.")

        body: dict[str, Any] = {
            "gremlin": f'def graph=ConfiguredGraphFactory.open("{escape_string_value(graph_id)}");'
            + script
        }
        if bindings:
            body["bindings"] = dict(bindings)

        response = await self._post(body)
        if not response.is_success:
            logger.error(f"Script on graph '{graph_id}' returned status {response.status_code}")
            raise GraphExecutionError(
                "Invalid status returned from server.",
                status_code=response.status_code,
                response=response.raw_response,
            )
        return response

    async def create_vertex(
        self,
        vertex: Mapping[str, PropertyValue],
        graph_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Add a vertex; `vertex["label"]` is the label, other keys become properties."""
        properties = {name: value for name, value in vertex.items() if name != "label"}
        script = f'graph.addVertex(T.label, "{escape_string_value(str(vertex["label"]))}"'
        script += _property_clauses(properties)
        script += ");"
        response = await self.execute(script, graph_id=graph_id)
        return response.first

    async def create_edge(
        self,
        label: str,
        out_v: ElementId,
        in_v: ElementId,
        properties: Mapping[str, PropertyValue] | None = None,
        graph_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Add a labeled edge between two vertices resolved by id."""
        script = "def g = graph.traversal();"
        script += f"def outV = g.V({format_element_id(out_v)}).next();"
        script += f"def inV = g.V({format_element_id(in_v)}).next();"
        script += f'outV.addEdge("{escape_string_value(label)}", inV'
        script += _property_clauses(properties)
        script += ");"
        response = await self.execute(script, graph_id=graph_id)
        return response.first

    async def update_edge(
        self,
        edge_id: ElementId,
        properties: Mapping[str, PropertyValue],
        graph_id: str | None = None,
    ) -> ScriptResponse:
        """Overwrite properties on an existing edge."""
        script = "def g = graph.traversal();"
        script += f"g.E({format_element_id(edge_id)})"
        for name, value in properties.items():
            script += f'.property("{name}", {format_literal(value)})'
        script += ";"
        return await self.execute(script, graph_id=graph_id)

    async def __aenter__(self) -> "GremlinClient":
        """Async context manager entry."""
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()
