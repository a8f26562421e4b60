import pytest
from household_planner.store import Store

HOUSEHOLD = "hh-main"
OTHER_HOUSEHOLD = "hh-other"
WEEK = "2024-06-10"  # a Monday


@pytest.fixture
def store(tmp_path) -> Store:
    """Empty database with two households."""
    s = Store(tmp_path / "planner.db")
    s.initialize()
    s.add_household("Main", household_id=HOUSEHOLD)
    s.add_household("Neighbours", household_id=OTHER_HOUSEHOLD)
    return s


@pytest.fixture
def catalog(store) -> Store:
    """Units, aisles, tags and ingredients for the main household."""
    store.add_unit(HOUSEHOLD, "gram", "g", unit_id="u-g")
    store.add_unit(HOUSEHOLD, "piece", "pc", unit_id="u-pc")
    store.add_unit(HOUSEHOLD, "millilitre", "ml", unit_id="u-ml")
    store.add_aisle(HOUSEHOLD, "Produce", 1, aisle_id="a-produce")
    store.add_aisle(HOUSEHOLD, "Dairy", 2, aisle_id="a-dairy")
    store.add_aisle(HOUSEHOLD, "Dry goods", 3, aisle_id="a-dry")
    store.add_tag(HOUSEHOLD, "Vegetarian", tag_id="t-veg")
    store.add_tag(HOUSEHOLD, "Fish", tag_id="t-fish")
    store.add_ingredient(HOUSEHOLD, "flour", "u-g", "a-dry", ingredient_id="i-flour")
    store.add_ingredient(HOUSEHOLD, "eggs", "u-pc", "a-dairy", ingredient_id="i-eggs")
    store.add_ingredient(HOUSEHOLD, "milk", "u-ml", "a-dairy", ingredient_id="i-milk")
    store.add_ingredient(HOUSEHOLD, "tomato", "u-pc", "a-produce", ingredient_id="i-tomato")
    store.add_ingredient(HOUSEHOLD, "salmon", "u-g", None, ingredient_id="i-salmon")
    return store


@pytest.fixture
def recipes(catalog) -> Store:
    """Sixteen recipes with ids r01..r16; enough to fill 7 days of lunch and dinner."""
    catalog.add_recipe(
        HOUSEHOLD, "Pancakes", servings=4,
        ingredients=[("i-flour", 200, "u-g"), ("i-eggs", 2, "u-pc"), ("i-milk", 300, "u-ml")],
        recipe_id="r01",
    )
    catalog.add_recipe(
        HOUSEHOLD, "Omelette", servings=2, tag_ids=["t-veg"],
        ingredients=[("i-eggs", 4, "u-pc")],
        recipe_id="r02",
    )
    catalog.add_recipe(
        HOUSEHOLD, "Baked Salmon", servings=2, tag_ids=["t-fish"],
        ingredients=[("i-salmon", 300, "u-g"), ("i-tomato", 2, "u-pc")],
        recipe_id="r03",
    )
    catalog.add_recipe(
        HOUSEHOLD, "Tomato Salad", servings=2, tag_ids=["t-veg"],
        ingredients=[("i-tomato", 3, "u-pc")],
        recipe_id="r04",
    )
    for n in range(5, 17):
        catalog.add_recipe(HOUSEHOLD, f"Dish {n:02d}", servings=2, recipe_id=f"r{n:02d}")
    return catalog
