"""Recipe interaction store on top of the Gremlin script client."""

import asyncio
import json
from typing import Any

from pydantic import ValidationError

from souschef.config import get_settings
from souschef.graph.base import GraphClientError, ScriptResponse
from souschef.graph.client import GremlinClient, escape_string_value, format_element_id
from souschef.graph.keys import (
    canonical_cuisine_key,
    canonical_ingredient_key,
    canonical_recipe_key,
)
from souschef.graph.models import (
    Edge,
    FavoriteRecipe,
    Path,
    PropertyValue,
    RecommendedRecipe,
    Vertex,
)
from souschef.logging_config import LoggingContext, configure_logging, get_logger

logger = get_logger(__name__)

PERSON = "person"
INGREDIENT = "ingredient"
CUISINE = "cuisine"
RECIPE = "recipe"

SELECTS = "selects"
HAS = "has"

DESCENDING = "desc"


def _serialize_detail(matching_recipes: Any) -> str:
    """Snapshot of the search results stored on ingredient/cuisine vertices."""
    return json.dumps(matching_recipes, separators=(",", ":")).replace("'", "\\'")


class RecipeGraphStore:
    """
    Records ingredient, cuisine and recipe selections as a property graph.

    Vertices are created lazily on first reference and never deleted.
    `selects` edges carry an interaction `count`; `has` edges link a recipe
    back to the ingredient or cuisine that led to it.

    Upserts and count increments are read-then-write sequences with no
    transaction. Two concurrent increments of the same edge can lose an
    update unless `serialize_edge_updates` is set, which serializes them
    per edge within this process.
    """

    def __init__(
        self,
        client: GremlinClient,
        graph_id: str,
        serialize_edge_updates: bool = False,
    ):
        self.client = client
        self.graph_id = graph_id
        self.serialize_edge_updates = serialize_edge_updates
        self._edge_locks: dict[tuple[str, str, str], asyncio.Lock] = {}
        self._edge_lock_users: dict[tuple[str, str, str], int] = {}

    async def init(self) -> None:
        """Create the graph if needed and bind it on the client."""
        with self._log_context():
            if not await self.client.get_or_create_graph(self.graph_id):
                logger.warning(f"Graph '{self.graph_id}' could not be confirmed; binding anyway")
        self.client.bind_graph(self.graph_id)

    async def _run(self, query: str) -> ScriptResponse:
        return await self.client.execute(
            f"def g = graph.traversal(); {query}", graph_id=self.graph_id
        )

    def _log_context(self, user_vertex: Vertex | str | None = None) -> LoggingContext:
        if isinstance(user_vertex, Vertex):
            user_vertex = user_vertex.name
        user_id = str(user_vertex) if user_vertex is not None else None
        return LoggingContext(user_id=user_id, graph_id=self.graph_id)

    # =========================================================================
    # User Operations
    # =========================================================================

    async def add_user(self, user_id: str) -> Vertex:
        """Add a person vertex for the external user id unless it already exists."""
        with self._log_context(user_id):
            return await self.add_vertex_if_not_exists(
                {"label": PERSON, "name": user_id}, "name"
            )

    # =========================================================================
    # Ingredient Operations
    # =========================================================================

    async def find_ingredient(self, ingredients: str) -> Vertex | None:
        """Find the ingredient vertex for a comma-separated ingredient list."""
        return await self.find_vertex(INGREDIENT, "name", canonical_ingredient_key(ingredients))

    async def add_ingredient(
        self,
        ingredients: str,
        matching_recipes: Any,
        user_vertex: Vertex,
    ) -> Vertex:
        """
        Upsert the ingredient vertex and count the user's request for it.

        Args:
            ingredients: Ingredient or comma-separated list of ingredients.
            matching_recipes: Search results for the ingredients, stored as `detail`.
            user_vertex: The requesting person vertex.

        Returns:
            The ingredient vertex.
        """
        vertex = {
            "label": INGREDIENT,
            "name": canonical_ingredient_key(ingredients),
            "detail": _serialize_detail(matching_recipes),
        }
        with self._log_context(user_vertex):
            ingredient = await self.add_vertex_if_not_exists(vertex, "name")
            await self.record_ingredient_request_for_user(ingredient, user_vertex)
        return ingredient

    async def record_ingredient_request_for_user(
        self, ingredient_vertex: Vertex, user_vertex: Vertex
    ) -> Edge | None:
        """Create or increment the person -> ingredient `selects` edge."""
        return await self.add_update_edge(SELECTS, user_vertex, ingredient_vertex)

    # =========================================================================
    # Cuisine Operations
    # =========================================================================

    async def find_cuisine(self, cuisine: str) -> Vertex | None:
        """Find the cuisine vertex by name."""
        return await self.find_vertex(CUISINE, "name", canonical_cuisine_key(cuisine))

    async def add_cuisine(
        self,
        cuisine: str,
        matching_recipes: Any,
        user_vertex: Vertex,
    ) -> Vertex:
        """Upsert the cuisine vertex and count the user's request for it."""
        vertex = {
            "label": CUISINE,
            "name": canonical_cuisine_key(cuisine),
            "detail": _serialize_detail(matching_recipes),
        }
        with self._log_context(user_vertex):
            cuisine_vertex = await self.add_vertex_if_not_exists(vertex, "name")
            await self.record_cuisine_request_for_user(cuisine_vertex, user_vertex)
        return cuisine_vertex

    async def record_cuisine_request_for_user(
        self, cuisine_vertex: Vertex, user_vertex: Vertex
    ) -> Edge | None:
        """Create or increment the person -> cuisine `selects` edge."""
        return await self.add_update_edge(SELECTS, user_vertex, cuisine_vertex)

    # =========================================================================
    # Recipe Operations
    # =========================================================================

    async def find_recipe(self, recipe_id: Any) -> Vertex | None:
        """Find the recipe vertex by its external id."""
        return await self.find_vertex(RECIPE, "name", canonical_recipe_key(recipe_id))

    async def add_recipe(
        self,
        recipe_id: Any,
        title: str,
        detail: str,
        origin_vertex: Vertex | None,
        user_vertex: Vertex,
    ) -> Vertex:
        """
        Upsert the recipe vertex and record how the user reached it.

        Args:
            recipe_id: External recipe id (typically from the recipe search API).
            title: Recipe title.
            detail: Free-text instructions.
            origin_vertex: Ingredient or cuisine vertex selected before the recipe, if any.
            user_vertex: The requesting person vertex.

        Returns:
            The recipe vertex.
        """
        vertex = {
            "label": RECIPE,
            "name": canonical_recipe_key(recipe_id),
            "title": title.strip().replace("'", "\\'"),
            "detail": detail.replace("'", "\\'").replace("\n", "\\\\n"),
        }
        with self._log_context(user_vertex):
            recipe = await self.add_vertex_if_not_exists(vertex, "name")
            await self.record_recipe_request_for_user(recipe, origin_vertex, user_vertex)
        return recipe

    async def record_recipe_request_for_user(
        self,
        recipe_vertex: Vertex,
        origin_vertex: Vertex | None,
        user_vertex: Vertex,
    ) -> None:
        """
        Count the person -> recipe selection and, when the recipe was reached
        through an ingredient or cuisine, the origin -> recipe selection plus
        a single recipe -> origin `has` edge.
        """
        await self.add_update_edge(SELECTS, user_vertex, recipe_vertex)
        if origin_vertex is None:
            return
        await self.add_update_edge(SELECTS, origin_vertex, recipe_vertex)
        await self.add_edge_if_not_exists(HAS, recipe_vertex, origin_vertex)

    async def find_favorite_recipes_for_user(
        self, user_vertex: Vertex, limit: int | None = None
    ) -> list[FavoriteRecipe]:
        """
        The user's recipes ordered by their own `selects` count, highest first.

        `limit` defaults to `RECOMMENDATION_LIMIT`.
        """
        query = (
            f'g.V().hasLabel("{PERSON}").has("name", "{self._user_name(user_vertex)}")'
            f'.outE("{SELECTS}").order().by("count", {DESCENDING})'
            f'.inV().hasLabel("{RECIPE}").limit({_resolve_limit(limit)})'
        )
        with self._log_context(user_vertex):
            response = await self._run(query)

        favorites = []
        for row in response.data:
            recipe = Vertex.model_validate(row)
            favorites.append(FavoriteRecipe(id=recipe.name, title=recipe.value("title")))
        return favorites

    async def find_recommended_recipes_for_ingredient(
        self, ingredients: str, user_vertex: Vertex, limit: int | None = None
    ) -> list[RecommendedRecipe]:
        """Recipes other users selected more than once after choosing these ingredients."""
        query = self._recommendation_query(
            INGREDIENT, canonical_ingredient_key(ingredients), user_vertex
        )
        with self._log_context(user_vertex):
            return await self._find_recommended_recipes(query, limit)

    async def find_recommended_recipes_for_cuisine(
        self, cuisine: str, user_vertex: Vertex, limit: int | None = None
    ) -> list[RecommendedRecipe]:
        """Recipes other users selected more than once after choosing this cuisine."""
        query = self._recommendation_query(CUISINE, canonical_cuisine_key(cuisine), user_vertex)
        with self._log_context(user_vertex):
            return await self._find_recommended_recipes(query, limit)

    def _recommendation_query(self, label: str, key: str, user_vertex: Vertex) -> str:
        # origin <- has - recipe <- selects(count > 1) - other person
        query = f'g.V().hasLabel("{label}").has("name","{escape_string_value(key)}")'
        query += f'.in("{HAS}")'
        query += f'.inE().has("count",gt(1)).order().by("count", {DESCENDING})'
        query += f'.outV().hasLabel("{PERSON}").has("name",neq("{self._user_name(user_vertex)}"))'
        query += ".path()"
        return query

    async def _find_recommended_recipes(
        self, query: str, limit: int | None
    ) -> list[RecommendedRecipe]:
        response = await self._run(query)
        return collect_recommendations(response.data, _resolve_limit(limit))

    # =========================================================================
    # Graph Helper Methods
    # =========================================================================

    async def find_vertex(
        self, label: str, property_name: str, property_value: str
    ) -> Vertex | None:
        """Find the first vertex with the given label and property value."""
        query = (
            f'g.V().hasLabel("{label}")'
            f'.has("{property_name}", "{escape_string_value(property_value)}")'
        )
        response = await self._run(query)
        if response.first is None:
            return None
        return Vertex.model_validate(response.first)

    async def add_vertex_if_not_exists(
        self, vertex: dict[str, PropertyValue], unique_property: str
    ) -> Vertex:
        """
        Return the vertex matching `vertex[unique_property]`, creating it if missing.

        The lookup and the creation are separate scripts, so two concurrent
        calls for a new key can both create a vertex.

        Raises:
            GraphClientError: If the service does not echo the created vertex.
        """
        label = str(vertex["label"])
        property_value = f"{vertex[unique_property]}"

        existing = await self.find_vertex(label, unique_property, property_value)
        if existing is not None:
            logger.debug(f"Returning {label} vertex where {unique_property}={property_value}")
            return existing

        logger.info(f"Creating {label} vertex where {unique_property}={property_value}")
        created = await self.client.create_vertex(vertex, graph_id=self.graph_id)
        if created is None:
            raise GraphClientError(
                f"Creating {label} vertex where {unique_property}={property_value} "
                "returned no vertex"
            )
        return Vertex.model_validate(created)

    async def find_edge(self, label: str, out_vertex: Vertex, in_vertex: Vertex) -> Edge | None:
        """Find the edge with this label from `out_vertex` to `in_vertex`."""
        query = (
            f"g.V({format_element_id(out_vertex.id)})"
            f'.outE("{label}").inV().hasId({format_element_id(in_vertex.id)}).path()'
        )
        response = await self._run(query)
        if response.first is None:
            return None

        try:
            edge = Path.model_validate(response.first).find_edge(label)
        except ValidationError as e:
            raise GraphClientError(
                f"Edge lookup from {out_vertex.id} to {in_vertex.id} returned a malformed path",
                response=response.first,
            ) from e
        if edge is None:
            raise GraphClientError(
                f"Path from {out_vertex.id} to {in_vertex.id} contains no {label} edge",
                response=response.first,
            )
        return edge

    async def add_edge_if_not_exists(
        self,
        label: str,
        out_vertex: Vertex,
        in_vertex: Vertex,
        properties: dict[str, PropertyValue] | None = None,
    ) -> Edge | None:
        """Create the edge unless one already connects the ordered pair."""
        existing = await self.find_edge(label, out_vertex, in_vertex)
        if existing is not None:
            logger.debug(f"Edge from {out_vertex.id} to {in_vertex.id} exists.")
            return existing

        logger.info(f"Creating {label} edge from {out_vertex.id} to {in_vertex.id}")
        created = await self.client.create_edge(
            label, out_vertex.id, in_vertex.id, properties, graph_id=self.graph_id
        )
        return Edge.model_validate(created) if created is not None else None

    async def add_update_edge(
        self, label: str, out_vertex: Vertex, in_vertex: Vertex
    ) -> Edge | None:
        """
        Create the weighted edge with count 1, or increment its count.

        Returns the edge as written, or None if the service did not echo a
        newly created edge.
        """
        if not self.serialize_edge_updates:
            return await self._increment_edge(label, out_vertex, in_vertex)

        key = (label, str(out_vertex.id), str(in_vertex.id))
        lock = self._edge_locks.setdefault(key, asyncio.Lock())
        self._edge_lock_users[key] = self._edge_lock_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._increment_edge(label, out_vertex, in_vertex)
        finally:
            # the last caller waiting on or holding the lock drops it
            self._edge_lock_users[key] -= 1
            if not self._edge_lock_users[key]:
                del self._edge_lock_users[key]
                del self._edge_locks[key]

    async def _increment_edge(
        self, label: str, out_vertex: Vertex, in_vertex: Vertex
    ) -> Edge | None:
        edge = await self.find_edge(label, out_vertex, in_vertex)
        if edge is None:
            logger.info(f"Creating {label} edge from {out_vertex.id} to {in_vertex.id}")
            created = await self.client.create_edge(
                label, out_vertex.id, in_vertex.id, {"count": 1}, graph_id=self.graph_id
            )
            return Edge.model_validate(created) if created is not None else None

        logger.debug(f"Edge from {out_vertex.id} to {in_vertex.id} exists.")
        properties = dict(edge.properties)
        properties["count"] = edge.count + 1
        await self.client.update_edge(edge.id, properties, graph_id=self.graph_id)
        return edge.model_copy(update={"properties": properties})

    @staticmethod
    def _user_name(user_vertex: Vertex) -> str:
        return escape_string_value(str(user_vertex.name))


def _resolve_limit(limit: int | None) -> int:
    return int(limit) if limit is not None else get_settings().recommendation_limit


def collect_recommendations(paths: list[Any], limit: int) -> list[RecommendedRecipe]:
    """
    Fold recommendation paths into distinct recipes with recommender counts.

    A recipe not seen before is added only while fewer than `limit` recipes
    have been collected. Every further path through an already collected
    recipe increments its `recommended_user_count`, even once the limit
    has been reached. Paths without a recipe vertex are skipped.
    """
    recipes: list[RecommendedRecipe] = []
    by_id: dict[str, RecommendedRecipe] = {}

    for row in paths:
        try:
            recipe_vertex = Path.model_validate(row).find_vertex(RECIPE)
        except ValidationError as e:
            logger.warning(f"Skipping malformed recommendation path: {e}")
            continue
        if recipe_vertex is None or recipe_vertex.name is None:
            logger.warning("Skipping recommendation path without a recipe vertex")
            continue

        recipe_id = str(recipe_vertex.name)
        recipe = by_id.get(recipe_id)
        if recipe is None:
            if len(recipes) >= limit:
                continue
            recipe = RecommendedRecipe(id=recipe_id, title=recipe_vertex.value("title"))
            recipes.append(recipe)
            by_id[recipe_id] = recipe
        else:
            recipe.recommended_user_count += 1

    return recipes


# Global instance for dependency injection
_graph_store: RecipeGraphStore | None = None


async def get_graph_store() -> RecipeGraphStore:
    """
    Get the global RecipeGraphStore instance.

    Configures logging, then creates and initializes the store from
    settings if not already done.
    """
    global _graph_store
    if _graph_store is None:
        settings = get_settings()
        configure_logging(settings)
        store = RecipeGraphStore(
            GremlinClient(),
            settings.graph_id,
            serialize_edge_updates=settings.serialize_edge_updates,
        )
        await store.init()
        _graph_store = store
    return _graph_store


async def close_graph_store() -> None:
    """Close the global RecipeGraphStore's HTTP client."""
    global _graph_store
    if _graph_store is not None:
        await _graph_store.client.close()
        _graph_store = None
