"""Pydantic models for graph elements and recommendation results."""

from typing import Any

from pydantic import BaseModel, Field

# Closed set of value kinds stored on vertices and edges.
PropertyValue = str | bool | int | float

ElementId = int | str


class BaseElement(BaseModel):
    """Base class for GraphSON elements returned by the script service."""

    class Config:
        populate_by_name = True
        extra = "allow"


class VertexProperty(BaseElement):
    """A single (possibly multi-valued) vertex property entry."""

    id: Any = None
    value: Any = None


class Vertex(BaseElement):
    """Vertex as returned in `result.data`."""

    id: ElementId
    label: str
    properties: dict[str, list[VertexProperty]] = Field(default_factory=dict)

    def value(self, name: str, default: Any = None) -> Any:
        """Return the first value of a vertex property."""
        entries = self.properties.get(name)
        if not entries:
            return default
        return entries[0].value

    @property
    def name(self) -> str | None:
        """The unique key shared by every vertex kind."""
        return self.value("name")


class Edge(BaseElement):
    """Edge as returned in `result.data` or inside a path."""

    id: ElementId
    label: str
    out_v: ElementId | None = Field(default=None, alias="outV")
    in_v: ElementId | None = Field(default=None, alias="inV")
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        """Interaction count on a weighted edge, 0 if unset."""
        return self.properties.get("count") or 0


class Path(BaseElement):
    """Traversal path: the sequence of elements visited by one branch."""

    labels: list[Any] = Field(default_factory=list)
    objects: list[Any] = Field(default_factory=list)

    @staticmethod
    def _is_edge(obj: dict[str, Any]) -> bool:
        return obj.get("type") == "edge" or ("inV" in obj and "outV" in obj)

    def find_vertex(self, label: str) -> Vertex | None:
        """First vertex in the path carrying the given label."""
        for obj in self.objects:
            if isinstance(obj, dict) and not self._is_edge(obj) and obj.get("label") == label:
                return Vertex.model_validate(obj)
        return None

    def find_edge(self, label: str | None = None) -> Edge | None:
        """First edge in the path, optionally restricted to a label."""
        for obj in self.objects:
            if isinstance(obj, dict) and self._is_edge(obj):
                if label is None or obj.get("label") == label:
                    return Edge.model_validate(obj)
        return None


# Result models


class FavoriteRecipe(BaseModel):
    """Recipe ranked by the requesting user's own interaction count."""

    id: str
    title: str | None = None


class RecommendedRecipe(BaseModel):
    """Recipe surfaced through other users sharing an ingredient or cuisine."""

    id: str
    title: str | None = None
    recommended_user_count: int = 1
