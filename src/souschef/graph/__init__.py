"""Graph store for recipe interactions backed by a Gremlin script service."""

from souschef.graph.base import (
    GraphClientError,
    GraphExecutionError,
    GraphTransportError,
    ScriptResponse,
)
from souschef.graph.client import GremlinClient, escape_string_value, format_literal
from souschef.graph.keys import (
    canonical_cuisine_key,
    canonical_ingredient_key,
    canonical_recipe_key,
)
from souschef.graph.models import (
    Edge,
    FavoriteRecipe,
    Path,
    RecommendedRecipe,
    Vertex,
    VertexProperty,
)
from souschef.graph.store import (
    RecipeGraphStore,
    close_graph_store,
    collect_recommendations,
    get_graph_store,
)

__all__ = [
    "Edge",
    "FavoriteRecipe",
    "GraphClientError",
    "GraphExecutionError",
    "GraphTransportError",
    "GremlinClient",
    "Path",
    "RecipeGraphStore",
    "RecommendedRecipe",
    "ScriptResponse",
    "Vertex",
    "VertexProperty",
    "canonical_cuisine_key",
    "canonical_ingredient_key",
    "canonical_recipe_key",
    "close_graph_store",
    "collect_recommendations",
    "escape_string_value",
    "format_literal",
    "get_graph_store",
]
