import pytest
from household_planner.models import MealSlot, Recipe
from household_planner.pins import PinSpec, find_recipe, parse_pin, resolve_pins


@pytest.fixture
def sample_recipes() -> list[Recipe]:
    return [
        Recipe(id="r1", title="Chicken Tikka Masala", household_id="h"),
        Recipe(id="r2", title="Chicken Soup", household_id="h"),
        Recipe(id="r3", title="Beef Stew", household_id="h"),
        Recipe(id="r4", title="Caesar Salad", household_id="h"),
    ]


class TestParsePins:
    def test_day_name(self):
        pin = parse_pin("monday:lunch:Beef Stew")
        assert pin.day == 0
        assert pin.meal_slot == MealSlot.LUNCH
        assert pin.recipe_query == "Beef Stew"

    def test_day_index(self):
        assert parse_pin("6:dinner:r3").day == 6

    def test_case_insensitive(self):
        pin = parse_pin("Friday:DINNER:Beef Stew")
        assert pin.day == 4
        assert pin.meal_slot == MealSlot.DINNER

    def test_recipe_with_colons(self):
        pin = parse_pin("tuesday:dinner:Stew: The Sequel")
        assert pin.recipe_query == "Stew: The Sequel"

    def test_invalid_day(self):
        with pytest.raises(ValueError, match="Unknown day"):
            parse_pin("badday:lunch:Foo")

    def test_index_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            parse_pin("7:lunch:Foo")

    def test_invalid_meal(self):
        with pytest.raises(ValueError, match="Unknown meal slot"):
            parse_pin("monday:brunch:Foo")

    def test_empty_recipe(self):
        with pytest.raises(ValueError, match="Empty recipe"):
            parse_pin("monday:lunch:")

    def test_bad_format(self):
        with pytest.raises(ValueError, match="Invalid pin format"):
            parse_pin("just-a-string")


class TestFindRecipe:
    def test_by_id(self, sample_recipes):
        assert find_recipe("r3", sample_recipes).title == "Beef Stew"

    def test_exact_title(self, sample_recipes):
        assert find_recipe("caesar salad", sample_recipes).id == "r4"

    def test_substring_prefers_shortest(self, sample_recipes):
        assert find_recipe("Chicken", sample_recipes).id == "r2"

    def test_not_found(self, sample_recipes):
        with pytest.raises(ValueError, match="No recipe found"):
            find_recipe("Lasagna", sample_recipes)


class TestResolvePins:
    def test_resolves_to_placements(self, sample_recipes):
        pins = [PinSpec(0, MealSlot.LUNCH, "Beef Stew"), PinSpec(1, MealSlot.DINNER, "r4")]
        placements = resolve_pins(pins, sample_recipes)
        assert [(p.day_index, p.meal_slot, p.recipe_id) for p in placements] == [
            (0, MealSlot.LUNCH, "r3"),
            (1, MealSlot.DINNER, "r4"),
        ]

    def test_identical_duplicate_collapsed(self, sample_recipes):
        pins = [PinSpec(0, MealSlot.LUNCH, "r3"), PinSpec(0, MealSlot.LUNCH, "Beef Stew")]
        assert len(resolve_pins(pins, sample_recipes)) == 1

    def test_conflicting_slot(self, sample_recipes):
        pins = [PinSpec(0, MealSlot.LUNCH, "r3"), PinSpec(0, MealSlot.LUNCH, "r4")]
        with pytest.raises(ValueError, match="Conflicting pins"):
            resolve_pins(pins, sample_recipes)
