"""Shared data models for the household planner."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class MealSlot(Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


DEFAULT_MEAL_SLOTS = [MealSlot.LUNCH, MealSlot.DINNER]
DAYS_IN_WEEK = 7


class ItemStatus(Enum):
    TODO = "TODO"
    DONE = "DONE"


class ItemSource(Enum):
    MEALPLAN = "MEALPLAN"
    MANUAL = "MANUAL"
    TRANSITION = "TRANSITION"


@dataclass
class Household:
    id: str
    name: str


@dataclass
class Unit:
    id: str
    household_id: str
    name: str
    abbr: str


@dataclass
class Aisle:
    id: str
    household_id: str
    name: str
    sort_order: int = 0


@dataclass
class Tag:
    id: str
    household_id: str
    name: str


@dataclass
class Ingredient:
    id: str
    household_id: str
    name: str
    default_unit_id: str | None = None
    default_aisle_id: str | None = None


@dataclass
class Recipe:
    id: str
    title: str
    household_id: str
    servings: int | None = None
    tag_ids: list[str] = field(default_factory=list)
    ingredient_ids: list[str] = field(default_factory=list)


@dataclass
class RecipeIngredient:
    recipe_id: str
    ingredient_id: str
    quantity: Decimal
    unit_id: str | None = None


@dataclass
class PantryItem:
    ingredient_id: str
    quantity: Decimal
    unit_id: str | None = None


@dataclass
class HistoryEntry:
    recipe_id: str
    weeks_ago: int


@dataclass(frozen=True)
class SlotKey:
    day_index: int
    meal_slot: MealSlot


@dataclass
class RequiredPlacement:
    day_index: int
    meal_slot: MealSlot
    recipe_id: str


@dataclass
class Exclusions:
    recipe_ids: list[str] = field(default_factory=list)
    tag_ids: list[str] = field(default_factory=list)


@dataclass
class WeekPlan:
    id: str
    household_id: str
    week_start: date


@dataclass
class SlotAssignment:
    day_index: int
    meal_slot: MealSlot
    recipe_id: str
    sort_order: int = 0
    is_manual: bool = False
    servings: int | None = None

    @property
    def key(self) -> SlotKey:
        return SlotKey(self.day_index, self.meal_slot)


@dataclass
class PlannedIngredient:
    """One recipe-ingredient line joined with its ingredient defaults."""
    ingredient_id: str
    ingredient_name: str
    quantity: Decimal
    unit_id: str | None
    default_unit_id: str | None
    default_aisle_id: str | None


@dataclass
class PlannedRecipe:
    """A slot assignment with the recipe detail the shopping list needs."""
    recipe_id: str
    recipe_servings: int | None
    requested_servings: int | None
    ingredients: list[PlannedIngredient] = field(default_factory=list)


@dataclass
class AggregatedNeed:
    ingredient_id: str
    ingredient_name: str
    total_quantity: Decimal
    unit_id: str | None
    aisle_id: str | None


@dataclass
class ShoppingItem:
    id: str
    household_id: str
    label: str
    status: ItemStatus = ItemStatus.TODO
    source: ItemSource = ItemSource.MEALPLAN
    week_plan_id: str | None = None
    ingredient_id: str | None = None
    quantity: Decimal | None = None
    unit_id: str | None = None
    aisle_id: str | None = None
    archived_at: datetime | None = None
    # Joined, read-only
    unit_abbr: str | None = None
    aisle_name: str | None = None
    aisle_sort_order: int | None = None


@dataclass
class TransitionItem:
    """Stock to carry into the shopping list outside any week plan."""
    id: str
    household_id: str
    label: str
    status: ItemStatus = ItemStatus.TODO
    ingredient_id: str | None = None
    quantity: Decimal | None = None
    unit_id: str | None = None
    aisle_id: str | None = None
