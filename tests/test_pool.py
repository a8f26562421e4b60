import json

import pytest
from conftest import HOUSEHOLD, WEEK
from household_planner.errors import BadRequest, Conflict, NotFound
from household_planner.models import Exclusions
from household_planner.pool import (
    PoolRequest,
    clear_pool,
    format_pool_json,
    format_pool_table,
    generate_pool_recipes,
    get_pool,
    save_pool,
)


class TestGeneratePool:
    def test_top_n_by_score(self, recipes):
        recipes.add_pantry_item(HOUSEHOLD, "i-tomato", 5, "u-pc")
        result = generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=3))
        # Tomato Salad fully covered, Baked Salmon half, then lowest id
        assert [i.recipe_id for i in result.items] == ["r04", "r03", "r01"]
        assert [i.sort_order for i in result.items] == [0, 1, 2]
        assert result.items[0].score == 1.0

    def test_fewer_recipes_than_requested(self, recipes):
        result = generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=50))
        assert result.generated == 16
        assert result.to_dict()["meta"] == {"requested": 50, "generated": 16}

    def test_exclusions_applied(self, recipes):
        request = PoolRequest(HOUSEHOLD, WEEK, count=16, exclude=Exclusions(tag_ids=["t-veg"]))
        ids = [i.recipe_id for i in generate_pool_recipes(recipes, request).items]
        assert "r02" not in ids and "r04" not in ids

    @pytest.mark.parametrize("count", [0, 51])
    def test_count_bounds(self, recipes, count):
        with pytest.raises(BadRequest):
            generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=count))

    def test_empty_catalog(self, catalog):
        with pytest.raises(Conflict):
            generate_pool_recipes(catalog, PoolRequest(HOUSEHOLD, WEEK, count=5))

    def test_everything_excluded(self, recipes):
        all_ids = [r.id for r in recipes.fetch_recipes(HOUSEHOLD)]
        request = PoolRequest(HOUSEHOLD, WEEK, count=5, exclude=Exclusions(recipe_ids=all_ids))
        with pytest.raises(Conflict, match="exclusions"):
            generate_pool_recipes(recipes, request)

    def test_unknown_household(self, recipes):
        with pytest.raises(NotFound):
            generate_pool_recipes(recipes, PoolRequest("missing", WEEK, count=5))


class TestStoredPool:
    def test_save_and_get(self, recipes):
        result = generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=4))
        save_pool(recipes, HOUSEHOLD, result)
        stored = get_pool(recipes, HOUSEHOLD, "2024-06-12")
        assert stored.pool_id == result.pool_id
        assert [i.recipe_id for i in stored.items] == [i.recipe_id for i in result.items]
        assert stored.items[0].title == "Pancakes"

    def test_save_replaces(self, recipes):
        save_pool(recipes, HOUSEHOLD, generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=4)))
        save_pool(recipes, HOUSEHOLD, generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=2)))
        assert get_pool(recipes, HOUSEHOLD, WEEK).generated == 2

    def test_get_missing_is_empty(self, recipes):
        stored = get_pool(recipes, HOUSEHOLD, WEEK)
        assert stored.items == []
        assert stored.pool_id is None

    def test_clear(self, recipes):
        save_pool(recipes, HOUSEHOLD, generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=4)))
        assert clear_pool(recipes, HOUSEHOLD, WEEK) is True
        assert get_pool(recipes, HOUSEHOLD, WEEK).items == []
        assert clear_pool(recipes, HOUSEHOLD, WEEK) is False


class TestPoolOutput:
    def test_table(self, recipes):
        result = generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=2))
        text = format_pool_table(result)
        assert "Pancakes" in text
        assert "Omelette" in text

    def test_json(self, recipes):
        result = generate_pool_recipes(recipes, PoolRequest(HOUSEHOLD, WEEK, count=2))
        data = json.loads(format_pool_json(result))
        assert data["week_start"] == WEEK
        assert [i["recipe_id"] for i in data["items"]] == ["r01", "r02"]
