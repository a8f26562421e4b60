from decimal import Decimal

import pytest
from conftest import HOUSEHOLD, OTHER_HOUSEHOLD, WEEK
from household_planner.errors import BadRequest, Forbidden, NotFound
from household_planner.models import ItemSource, ItemStatus, MealSlot
from household_planner.planner import set_slot
from household_planner.shopping import list_shopping_items
from household_planner.transition import (
    add_quantities,
    add_transition_item,
    apply_transitions,
    delete_transition_item,
    list_transition_items,
    set_transition_status,
)


def _active(store) -> dict:
    return {i.label: i for i in list_shopping_items(store, HOUSEHOLD).items}


class TestAddQuantities:
    def test_both_present(self):
        assert add_quantities(Decimal("1.5"), Decimal(2)) == Decimal("3.5")

    def test_one_side_missing(self):
        assert add_quantities(None, Decimal(2)) == Decimal(2)
        assert add_quantities(Decimal(2), None) == Decimal(2)

    def test_both_missing(self):
        assert add_quantities(None, None) is None


class TestItems:
    def test_list_in_creation_order(self, catalog):
        add_transition_item(catalog, HOUSEHOLD, "rice", quantity=1)
        add_transition_item(catalog, HOUSEHOLD, "soap")
        assert [t.label for t in list_transition_items(catalog, HOUSEHOLD)] == ["rice", "soap"]

    def test_done_hidden_by_default(self, catalog):
        rice = add_transition_item(catalog, HOUSEHOLD, "rice")
        set_transition_status(catalog, HOUSEHOLD, rice.id, ItemStatus.DONE)
        assert list_transition_items(catalog, HOUSEHOLD) == []
        assert len(list_transition_items(catalog, HOUSEHOLD, include_done=True)) == 1

    def test_toggle(self, catalog):
        rice = add_transition_item(catalog, HOUSEHOLD, "rice")
        assert set_transition_status(catalog, HOUSEHOLD, rice.id).status == ItemStatus.DONE
        assert set_transition_status(catalog, HOUSEHOLD, rice.id).status == ItemStatus.TODO

    def test_blank_label(self, catalog):
        with pytest.raises(BadRequest):
            add_transition_item(catalog, HOUSEHOLD, " ")

    def test_unknown_household(self, catalog):
        with pytest.raises(NotFound):
            add_transition_item(catalog, "missing", "rice")

    def test_other_household(self, catalog):
        rice = add_transition_item(catalog, HOUSEHOLD, "rice")
        with pytest.raises(Forbidden):
            set_transition_status(catalog, OTHER_HOUSEHOLD, rice.id)
        with pytest.raises(Forbidden):
            delete_transition_item(catalog, OTHER_HOUSEHOLD, rice.id)

    def test_delete(self, catalog):
        rice = add_transition_item(catalog, HOUSEHOLD, "rice")
        delete_transition_item(catalog, HOUSEHOLD, rice.id)
        assert list_transition_items(catalog, HOUSEHOLD, include_done=True) == []
        with pytest.raises(NotFound):
            delete_transition_item(catalog, HOUSEHOLD, rice.id)


class TestApply:
    def test_nothing_to_apply(self, catalog):
        result = apply_transitions(catalog, HOUSEHOLD)
        assert (result.applied, result.merged, result.created) == (0, 0, 0)

    def test_merges_into_planned_item(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, MealSlot.LUNCH, "r02")
        eggs = _active(recipes)["eggs"]
        add_transition_item(recipes, HOUSEHOLD, "eggs", quantity=6, unit_id="u-pc", ingredient_id="i-eggs")

        result = apply_transitions(recipes, HOUSEHOLD)
        assert (result.applied, result.merged, result.created) == (1, 1, 0)

        merged = _active(recipes)["eggs"]
        assert merged.id == eggs.id
        assert merged.quantity == Decimal(10)
        assert merged.source == ItemSource.MEALPLAN

    def test_other_unit_creates_item(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, MealSlot.LUNCH, "r02")
        add_transition_item(recipes, HOUSEHOLD, "egg box", quantity=1, ingredient_id="i-eggs")

        result = apply_transitions(recipes, HOUSEHOLD)
        assert (result.merged, result.created) == (0, 1)

        created = _active(recipes)["egg box"]
        assert created.source == ItemSource.TRANSITION
        assert created.week_plan_id is None
        assert created.status == ItemStatus.TODO

    def test_item_without_ingredient_always_created(self, recipes):
        add_transition_item(recipes, HOUSEHOLD, "soap")
        add_transition_item(recipes, HOUSEHOLD, "soap")
        result = apply_transitions(recipes, HOUSEHOLD)
        assert (result.merged, result.created) == (0, 2)

    def test_same_key_collapses_into_one_item(self, catalog):
        add_transition_item(catalog, HOUSEHOLD, "flour", quantity=500, unit_id="u-g", ingredient_id="i-flour")
        add_transition_item(catalog, HOUSEHOLD, "flour", quantity=250, unit_id="u-g", ingredient_id="i-flour")

        result = apply_transitions(catalog, HOUSEHOLD)
        assert (result.applied, result.merged, result.created) == (2, 1, 1)
        assert _active(catalog)["flour"].quantity == Decimal(750)

    def test_missing_quantity_keeps_existing(self, recipes):
        set_slot(recipes, HOUSEHOLD, WEEK, 0, MealSlot.LUNCH, "r02")
        add_transition_item(recipes, HOUSEHOLD, "eggs", unit_id="u-pc", ingredient_id="i-eggs")
        apply_transitions(recipes, HOUSEHOLD)
        assert _active(recipes)["eggs"].quantity == Decimal(4)

    def test_applied_items_closed(self, catalog):
        add_transition_item(catalog, HOUSEHOLD, "soap")
        apply_transitions(catalog, HOUSEHOLD)

        assert list_transition_items(catalog, HOUSEHOLD) == []
        [soap] = list_transition_items(catalog, HOUSEHOLD, include_done=True)
        assert soap.status == ItemStatus.DONE
        assert apply_transitions(catalog, HOUSEHOLD).applied == 0

    def test_done_items_not_applied(self, catalog):
        soap = add_transition_item(catalog, HOUSEHOLD, "soap")
        set_transition_status(catalog, HOUSEHOLD, soap.id, ItemStatus.DONE)
        assert apply_transitions(catalog, HOUSEHOLD).applied == 0
        assert _active(catalog) == {}
