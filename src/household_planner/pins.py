"""Required-placement parsing and resolution for the command line."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from household_planner.models import MealSlot, Recipe, RequiredPlacement
from household_planner.weeks import DAY_NAMES, get_day_index

logger = logging.getLogger(__name__)


@dataclass
class PinSpec:
    """A parsed 'day:meal:recipe' placement, recipe not yet looked up."""
    day: int               # 0-indexed, Monday=0
    meal_slot: MealSlot
    recipe_query: str


def parse_pin(raw: str) -> PinSpec:
    """Parse 'day:meal:Recipe' into a PinSpec.

    day: a day name (monday..sunday) or a 0-based index
    meal: breakfast, lunch, dinner
    recipe: everything after the second colon, an id or a title
    """
    parts = raw.split(":", maxsplit=2)
    if len(parts) != 3:
        raise ValueError(
            f"Invalid pin format: '{raw}'. Expected 'day:meal:Recipe'"
        )

    day_str, meal_str, recipe_str = parts
    day_str = day_str.strip().lower()
    meal_str = meal_str.strip().lower()
    recipe_str = recipe_str.strip()

    if not recipe_str:
        raise ValueError(f"Empty recipe in pin: '{raw}'")

    if day_str.isdigit():
        day = int(day_str)
    else:
        day = get_day_index(day_str)
        if day < 0:
            raise ValueError(
                f"Unknown day '{day_str}' in pin. Use a day name or an index 0-6."
            )
    if day > 6:
        raise ValueError(f"Day index {day} out of range in pin: '{raw}'")

    try:
        meal_slot = MealSlot(meal_str)
    except ValueError:
        valid = ", ".join(m.value for m in MealSlot)
        raise ValueError(
            f"Unknown meal slot '{meal_str}' in pin. Valid: {valid}"
        )

    return PinSpec(day=day, meal_slot=meal_slot, recipe_query=recipe_str)


def find_recipe(query: str, recipes: list[Recipe]) -> Recipe:
    """Find a recipe by id, exact title, or title substring.

    Substring matches prefer the shortest title (most specific).
    """
    for r in recipes:
        if r.id == query:
            return r

    query_lower = query.lower()
    for r in recipes:
        if r.title.lower() == query_lower:
            return r

    matches = [r for r in recipes if query_lower in r.title.lower()]
    if matches:
        matches.sort(key=lambda r: (len(r.title), r.id))
        if len(matches) > 1:
            logger.debug(
                "Pin '%s' matched %d recipes, using '%s'", query, len(matches), matches[0].title
            )
        return matches[0]

    raise ValueError(f"No recipe found matching '{query}'")


def resolve_pins(pins: list[PinSpec], recipes: list[Recipe]) -> list[RequiredPlacement]:
    """Resolve pins to required placements, rejecting two recipes in one slot."""
    placements: list[RequiredPlacement] = []
    slot_map: dict[tuple[int, MealSlot], Recipe] = {}

    for pin in pins:
        recipe = find_recipe(pin.recipe_query, recipes)
        key = (pin.day, pin.meal_slot)
        if key in slot_map and slot_map[key].id != recipe.id:
            raise ValueError(
                f"Conflicting pins for {DAY_NAMES[pin.day]} {pin.meal_slot.value}: "
                f"'{slot_map[key].title}' vs '{recipe.title}'"
            )
        if key in slot_map:
            continue
        slot_map[key] = recipe
        placements.append(
            RequiredPlacement(day_index=pin.day, meal_slot=pin.meal_slot, recipe_id=recipe.id)
        )

    return placements
