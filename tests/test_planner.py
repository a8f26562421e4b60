from datetime import date

import pytest
from conftest import HOUSEHOLD, OTHER_HOUSEHOLD, WEEK
from household_planner.errors import BadRequest, Conflict, NotFound
from household_planner.models import Exclusions, MealSlot, RequiredPlacement
from household_planner.planner import (
    GenerateRequest,
    clear_week,
    enumerate_slots,
    format_plan_markdown,
    generate_meal_plan,
    get_week_plan,
    set_slot,
)
from household_planner.scoring import TagQuota

LUNCH = MealSlot.LUNCH
DINNER = MealSlot.DINNER


def _ids(result) -> list[str]:
    return [s.recipe_id for s in result.slots]


class TestGenerate:
    def test_fills_every_slot_with_distinct_recipes(self, recipes):
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        assert result.total_slots == 14
        assert result.filled_slots == 14
        assert len(set(_ids(result))) == 14

    def test_day_major_order(self, recipes):
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        keys = [(s.day_index, s.meal_slot) for s in result.slots]
        assert keys == [(k.day_index, k.meal_slot) for k in enumerate_slots(7, [LUNCH, DINNER])]

    def test_ties_go_to_lowest_id(self, recipes):
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        assert _ids(result) == [f"r{n:02d}" for n in range(1, 15)]

    def test_deterministic(self, recipes):
        first = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        second = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        assert _ids(first) == _ids(second)
        assert first.week_plan_id == second.week_plan_id

    def test_week_start_normalized(self, recipes):
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, "2024-06-13"))
        assert result.week_start == date(2024, 6, 10)

    def test_pantry_coverage_ranks_first(self, recipes):
        recipes.add_pantry_item(HOUSEHOLD, "i-eggs", 12, "u-pc")
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        # Omelette is fully covered, Pancakes a third
        assert _ids(result)[:2] == ["r02", "r01"]

    def test_recent_recipes_penalized(self, recipes):
        generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, "2024-06-03"))
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        assert _ids(result)[:2] == ["r15", "r16"]

    def test_tag_quota_bonus(self, recipes):
        request = GenerateRequest(HOUSEHOLD, WEEK, tag_quotas=[TagQuota("t-fish", 1)])
        result = generate_meal_plan(recipes, request)
        assert _ids(result)[0] == "r03"

    def test_debug_breakdown(self, recipes):
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK, debug=True))
        assert len(result.score_breakdown) == 14
        assert "score_breakdown" in result.to_dict()["meta"]

    def test_no_breakdown_by_default(self, recipes):
        result = generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        assert result.score_breakdown is None
        assert "score_breakdown" not in result.to_dict()["meta"]

    def test_required_breakdown_counts_its_own_tags(self, recipes):
        recipes.add_pantry_item(HOUSEHOLD, "i-salmon", 100, "u-g")
        request = GenerateRequest(
            HOUSEHOLD,
            WEEK,
            required=[RequiredPlacement(0, LUNCH, "r03")],
            tag_quotas=[TagQuota("t-fish", 1)],
            debug=True,
        )
        first = generate_meal_plan(recipes, request).score_breakdown[0]
        assert first.recipe_id == "r03"
        assert first.pantry_coverage_ratio == 0.5
        assert first.quota_bonus == 0.0
        assert first.final_score == 0.5


class TestExclusionsAndRequired:
    def test_required_recipe_not_picked_for_earlier_slot(self, recipes):
        request = GenerateRequest(HOUSEHOLD, WEEK, required=[RequiredPlacement(3, LUNCH, "r01")])
        result = generate_meal_plan(recipes, request)
        placed = [(s.day_index, s.meal_slot) for s in result.slots if s.recipe_id == "r01"]
        assert placed == [(3, LUNCH)]
        assert _ids(result)[0] == "r02"
        assert len(set(_ids(result))) == 14

    def test_excluded_tag_never_planned(self, recipes):
        request = GenerateRequest(HOUSEHOLD, WEEK, exclude=Exclusions(tag_ids=["t-veg"]))
        result = generate_meal_plan(recipes, request)
        assert "r02" not in _ids(result)
        assert "r04" not in _ids(result)

    def test_required_bypasses_exclusion(self, recipes):
        request = GenerateRequest(
            HOUSEHOLD,
            WEEK,
            exclude=Exclusions(recipe_ids=["r03"]),
            required=[RequiredPlacement(2, DINNER, "r03")],
        )
        result = generate_meal_plan(recipes, request)
        placed = {(s.day_index, s.meal_slot): s.recipe_id for s in result.slots}
        assert placed[(2, DINNER)] == "r03"
        assert _ids(result).count("r03") == 1

    def test_duplicate_required_recipe(self, recipes):
        request = GenerateRequest(
            HOUSEHOLD,
            WEEK,
            required=[RequiredPlacement(0, LUNCH, "r01"), RequiredPlacement(1, LUNCH, "r01")],
        )
        with pytest.raises(BadRequest, match="Duplicate recipeId"):
            generate_meal_plan(recipes, request)

    def test_required_recipe_missing(self, recipes):
        request = GenerateRequest(HOUSEHOLD, WEEK, required=[RequiredPlacement(0, LUNCH, "nope")])
        with pytest.raises(NotFound):
            generate_meal_plan(recipes, request)

    def test_required_day_out_of_range(self, recipes):
        request = GenerateRequest(
            HOUSEHOLD, WEEK, days=3, required=[RequiredPlacement(5, LUNCH, "r01")]
        )
        with pytest.raises(BadRequest, match="dayIndex"):
            generate_meal_plan(recipes, request)

    def test_required_inactive_slot(self, recipes):
        request = GenerateRequest(
            HOUSEHOLD, WEEK, required=[RequiredPlacement(0, MealSlot.BREAKFAST, "r01")]
        )
        with pytest.raises(BadRequest, match="mealSlot"):
            generate_meal_plan(recipes, request)


class TestGenerateFailures:
    def test_not_enough_recipes(self, catalog):
        for n in range(13):
            catalog.add_recipe(HOUSEHOLD, f"Only {n}", recipe_id=f"x{n:02d}")
        with pytest.raises(Conflict, match="Filled 13/14"):
            generate_meal_plan(catalog, GenerateRequest(HOUSEHOLD, WEEK))
        assert catalog.get_week_plan(HOUSEHOLD, date(2024, 6, 10)) is None

    def test_empty_catalog(self, catalog):
        with pytest.raises(Conflict, match="No recipes"):
            generate_meal_plan(catalog, GenerateRequest(HOUSEHOLD, WEEK))

    def test_unknown_household(self, recipes):
        with pytest.raises(NotFound):
            generate_meal_plan(recipes, GenerateRequest("missing", WEEK))

    def test_days_out_of_range(self, recipes):
        with pytest.raises(BadRequest):
            generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK, days=0))
        with pytest.raises(BadRequest):
            generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK, days=8))

    def test_bad_week_start(self, recipes):
        with pytest.raises(BadRequest):
            generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, "next week"))

    def test_other_household_recipes_invisible(self, recipes):
        with pytest.raises(Conflict):
            generate_meal_plan(recipes, GenerateRequest(OTHER_HOUSEHOLD, WEEK))


class TestManualSlots:
    def test_preserved_when_requested(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, LUNCH, "r10")
        request = GenerateRequest(HOUSEHOLD, WEEK, preserve_manual_slots=True)
        result = generate_meal_plan(recipes, request)

        assert result.preserved_slots == 1
        assert result.filled_slots == 14
        assert "r10" not in _ids(result)

        view = get_week_plan(recipes, HOUSEHOLD, WEEK)
        monday_lunch = [s for s in view.slots if s.day_index == 0 and s.meal_slot == LUNCH]
        assert [(s.recipe_id, s.is_manual) for s in monday_lunch] == [("r10", True)]
        assert len(view.slots) == 14

    def test_replaced_by_default(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, LUNCH, "r10")
        generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        view = get_week_plan(recipes, HOUSEHOLD, WEEK)
        assert not any(s.is_manual for s in view.slots)

    def test_required_on_preserved_slot_rejected(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, LUNCH, "r10")
        request = GenerateRequest(
            HOUSEHOLD,
            WEEK,
            preserve_manual_slots=True,
            required=[RequiredPlacement(0, LUNCH, "r05")],
        )
        with pytest.raises(BadRequest, match="preserved manual slot"):
            generate_meal_plan(recipes, request)

    def test_required_recipe_already_preserved_rejected(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, LUNCH, "r10")
        request = GenerateRequest(
            HOUSEHOLD,
            WEEK,
            preserve_manual_slots=True,
            required=[RequiredPlacement(2, DINNER, "r10")],
        )
        with pytest.raises(BadRequest, match="already sits"):
            generate_meal_plan(recipes, request)

    def test_preserved_tags_count_towards_quota(self, recipes):
        recipes.add_recipe(HOUSEHOLD, "Fish Tacos", tag_ids=["t-fish"], recipe_id="r17")
        set_slot(recipes, HOUSEHOLD, WEEK, 6, DINNER, "r03")
        request = GenerateRequest(
            HOUSEHOLD,
            WEEK,
            preserve_manual_slots=True,
            tag_quotas=[TagQuota("t-fish", 1)],
            debug=True,
        )
        result = generate_meal_plan(recipes, request)
        # The pinned salmon already meets the fish quota
        assert _ids(result)[0] == "r01"
        assert all(b.quota_bonus == 0.0 for b in result.score_breakdown)
        assert "r03" not in _ids(result)



class TestWeekEditing:
    def test_get_missing_week(self, recipes):
        with pytest.raises(NotFound):
            get_week_plan(recipes, HOUSEHOLD, WEEK)

    def test_view_has_titles_and_tags(self, recipes):
        generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        view = get_week_plan(recipes, HOUSEHOLD, WEEK)
        omelette = next(s for s in view.slots if s.recipe_id == "r02")
        assert omelette.recipe_title == "Omelette"
        assert omelette.tags == ["Vegetarian"]

    def test_set_slot_replaces_occupant(self, recipes):
        generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        slot = set_slot(recipes, HOUSEHOLD, WEEK, 0, LUNCH, "r16")
        assert slot.is_manual
        view = get_week_plan(recipes, HOUSEHOLD, WEEK)
        occupants = [s.recipe_id for s in view.slots if s.day_index == 0 and s.meal_slot == LUNCH]
        assert occupants == ["r16"]

    def test_set_slot_invalid_day(self, recipes):
        with pytest.raises(BadRequest, match="dayIndex"):
            set_slot(recipes, HOUSEHOLD, WEEK, 7, LUNCH, "r01")

    def test_set_slot_foreign_recipe(self, recipes):
        recipes.add_recipe(OTHER_HOUSEHOLD, "Theirs", recipe_id="foreign")
        with pytest.raises(NotFound):
            set_slot(recipes, HOUSEHOLD, WEEK, 0, LUNCH, "foreign")

    def test_clear_week(self, recipes):
        generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK))
        assert clear_week(recipes, HOUSEHOLD, WEEK) == 14
        assert get_week_plan(recipes, HOUSEHOLD, WEEK).slots == []

    def test_clear_missing_week(self, recipes):
        assert clear_week(recipes, HOUSEHOLD, WEEK) == 0

    def test_markdown(self, recipes):
        generate_meal_plan(recipes, GenerateRequest(HOUSEHOLD, WEEK, days=1))
        text = format_plan_markdown(get_week_plan(recipes, HOUSEHOLD, WEEK))
        assert "## Monday" in text
        assert "| Lunch | Pancakes |" in text
