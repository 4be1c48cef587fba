"""Pytest configuration and shared fixtures."""

import asyncio
import copy
import re
from typing import Any

import pytest

from souschef.graph.base import ScriptResponse
from souschef.graph.client import GremlinClient
from souschef.graph.store import RecipeGraphStore

# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (require external services)"
    )


# =============================================================================
# GraphSON Builders
# =============================================================================


def graphson_vertex(vertex_id: int, label: str, **properties: Any) -> dict[str, Any]:
    """Vertex in the shape the script service returns."""
    return {
        "id": vertex_id,
        "label": label,
        "type": "vertex",
        "properties": {
            name: [{"id": f"{vertex_id}-{name}", "value": value}]
            for name, value in properties.items()
        },
    }


def graphson_edge(
    edge_id: str, label: str, out_v: int, in_v: int, **properties: Any
) -> dict[str, Any]:
    """Edge in the shape the script service returns."""
    return {
        "id": edge_id,
        "label": label,
        "type": "edge",
        "outV": out_v,
        "inV": in_v,
        "properties": properties,
    }


def graphson_path(*objects: dict[str, Any]) -> dict[str, Any]:
    """Path row as returned by a `.path()` traversal."""
    return {"labels": [[] for _ in objects], "objects": list(objects)}


@pytest.fixture
def make_vertex():
    """Factory for GraphSON vertex rows."""
    return graphson_vertex


@pytest.fixture
def make_edge():
    """Factory for GraphSON edge rows."""
    return graphson_edge


@pytest.fixture
def make_path():
    """Factory for GraphSON path rows."""
    return graphson_path


# =============================================================================
# In-memory Gremlin double
# =============================================================================

_FIND_VERTEX = re.compile(
    r'^g\.V\(\)\.hasLabel\("(?P<label>\w+)"\)\.has\("(?P<key>\w+)", "(?P<value>(?:[^"\\]|\\.)*)"\)$'
)
_FIND_EDGE_PATH = re.compile(
    r'^g\.V\((?P<out>\d+)\)\.outE\("(?P<label>\w+)"\)\.inV\(\)\.hasId\((?P<in>\d+)\)\.path\(\)$'
)
_TRAVERSAL_PREFIX = "def g = graph.traversal(); "


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


class InMemoryGremlinClient(GremlinClient):
    """
    Gremlin client double that keeps the graph in dictionaries.

    Understands the lookup scripts the store emits and implements the
    mutation helpers directly. Every call yields to the event loop once
    before touching state, like a real remote round trip.
    """

    def __init__(self) -> None:
        super().__init__(url="http://graph.test/gremlin", username="test", password="test")
        self.vertices: dict[int, dict[str, Any]] = {}
        self.edges: dict[str, dict[str, Any]] = {}
        self.scripts: list[str] = []
        self.created_vertices: list[dict[str, Any]] = []
        self.created_edges: list[dict[str, Any]] = []
        self.updated_edges: list[tuple[Any, dict[str, Any]]] = []
        self._next_vertex_id = 4096
        self._next_edge_id = 1

    async def execute(self, script, graph_id=None, bindings=None) -> ScriptResponse:
        self.scripts.append(script)
        await asyncio.sleep(0)

        query = script.removeprefix(_TRAVERSAL_PREFIX)
        if match := _FIND_VERTEX.match(query):
            value = _unescape(match["value"])
            rows = [
                copy.deepcopy(v)
                for v in self.vertices.values()
                if v["label"] == match["label"]
                and v["properties"].get(match["key"], [{}])[0].get("value") == value
            ]
            return ScriptResponse(status_code=200, data=rows)

        if match := _FIND_EDGE_PATH.match(query):
            out_v, in_v = int(match["out"]), int(match["in"])
            rows = [
                graphson_path(
                    copy.deepcopy(self.vertices[out_v]),
                    copy.deepcopy(edge),
                    copy.deepcopy(self.vertices[in_v]),
                )
                for edge in self.edges.values()
                if edge["label"] == match["label"]
                and edge["outV"] == out_v
                and edge["inV"] == in_v
            ]
            return ScriptResponse(status_code=200, data=rows)

        raise AssertionError(f"Unexpected script: {script}")

    async def create_vertex(self, vertex, graph_id=None):
        await asyncio.sleep(0)
        vertex_id = self._next_vertex_id
        self._next_vertex_id += 1
        properties = {name: value for name, value in vertex.items() if name != "label"}
        row = graphson_vertex(vertex_id, vertex["label"], **properties)
        self.vertices[vertex_id] = row
        self.created_vertices.append(row)
        return copy.deepcopy(row)

    async def create_edge(self, label, out_v, in_v, properties=None, graph_id=None):
        await asyncio.sleep(0)
        edge_id = f"e-{self._next_edge_id}"
        self._next_edge_id += 1
        row = graphson_edge(edge_id, label, out_v, in_v, **dict(properties or {}))
        self.edges[edge_id] = row
        self.created_edges.append(row)
        return copy.deepcopy(row)

    async def update_edge(self, edge_id, properties, graph_id=None):
        await asyncio.sleep(0)
        self.edges[edge_id]["properties"].update(properties)
        self.updated_edges.append((edge_id, dict(properties)))
        return ScriptResponse(status_code=200, data=[])

    def edges_between(self, label: str, out_v: int, in_v: int) -> list[dict[str, Any]]:
        """All stored edges with this label for the ordered pair."""
        return [
            e
            for e in self.edges.values()
            if e["label"] == label and e["outV"] == out_v and e["inV"] == in_v
        ]

    def vertices_with_label(self, label: str) -> list[dict[str, Any]]:
        """All stored vertices with this label."""
        return [v for v in self.vertices.values() if v["label"] == label]


@pytest.fixture
def graph_client():
    """In-memory Gremlin client."""
    return InMemoryGremlinClient()


@pytest.fixture
def store(graph_client):
    """Recipe store over the in-memory client."""
    return RecipeGraphStore(graph_client, "test-graph")


@pytest.fixture
def serialized_store(graph_client):
    """Recipe store that serializes count updates per edge."""
    return RecipeGraphStore(graph_client, "test-graph", serialize_edge_updates=True)


# =============================================================================
# Sample Data
# =============================================================================


@pytest.fixture
def sample_matching_recipes():
    """Search results stored on ingredient and cuisine vertices."""
    return [
        {"id": 42, "title": "Tomato Soup"},
        {"id": 77, "title": "Nonna's Bruschetta"},
    ]
