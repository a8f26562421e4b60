"""Shopping list generation and reconciliation from a week plan."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from household_planner.errors import BadRequest, Conflict, Forbidden, NotFound
from household_planner.models import (
    AggregatedNeed,
    ItemSource,
    ItemStatus,
    PantryItem,
    PlannedRecipe,
    ShoppingItem,
    WeekPlan,
)
from household_planner.store import Store, new_id, to_decimal
from household_planner.weeks import format_date, normalize_to_monday

logger = logging.getLogger(__name__)

NeedKey = tuple[str, str | None]


@dataclass
class BuildRequest:
    household_id: str
    week_plan_id: str | None = None
    week_start: str | date | None = None


@dataclass
class BuildResult:
    week_plan_id: str
    week_start: date
    items: list[ShoppingItem]
    ingredients_aggregated: int = 0
    pantry_deductions: int = 0
    created: int = 0
    updated: int = 0
    archived: int = 0

    @property
    def total_active(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict:
        return {
            "week_plan_id": self.week_plan_id,
            "week_start": format_date(self.week_start),
            "items": [item_to_dict(i) for i in self.items],
            "meta": {
                "total_active": self.total_active,
                "ingredients_aggregated": self.ingredients_aggregated,
                "pantry_deductions": self.pantry_deductions,
                "created": self.created,
                "updated": self.updated,
                "archived": self.archived,
            },
        }


@dataclass
class ShoppingChanges:
    """What a build will write: all of it applies in one transaction."""
    updates: list[ShoppingItem] = field(default_factory=list)
    archive_ids: list[str] = field(default_factory=list)
    creates: list[ShoppingItem] = field(default_factory=list)


def need_key(ingredient_id: str, unit_id: str | None) -> NeedKey:
    return (ingredient_id, unit_id)


def scale_factor(recipe_servings: int | None, requested_servings: int | None) -> Decimal:
    """requested / default servings; both fall back to the recipe's own servings."""
    base = recipe_servings if recipe_servings is not None else 1
    requested = requested_servings if requested_servings is not None else base
    if base <= 0:
        return Decimal(1)
    return Decimal(requested) / Decimal(base)


def aggregate_ingredients(planned: Iterable[PlannedRecipe]) -> dict[NeedKey, AggregatedNeed]:
    """Sum scaled ingredient quantities across assignments.

    Keyed by (ingredient, unit); the unit is the recipe line's own unit,
    falling back to the ingredient's default unit. Exact decimal sums make
    the result independent of assignment order.
    """
    needs: dict[NeedKey, AggregatedNeed] = {}

    for recipe in planned:
        factor = scale_factor(recipe.recipe_servings, recipe.requested_servings)
        for line in recipe.ingredients:
            unit_id = line.unit_id or line.default_unit_id
            key = need_key(line.ingredient_id, unit_id)
            qty = line.quantity * factor

            if key in needs:
                needs[key].total_quantity += qty
            else:
                needs[key] = AggregatedNeed(
                    ingredient_id=line.ingredient_id,
                    ingredient_name=line.ingredient_name,
                    total_quantity=qty,
                    unit_id=unit_id,
                    aisle_id=line.default_aisle_id,
                )

    return needs


def build_pantry_index(pantry: Iterable[PantryItem]) -> dict[NeedKey, Decimal]:
    """Total pantry stock per (ingredient, unit)."""
    index: dict[NeedKey, Decimal] = {}
    for item in pantry:
        key = need_key(item.ingredient_id, item.unit_id)
        index[key] = index.get(key, Decimal(0)) + to_decimal(item.quantity)
    return index


def subtract_pantry(
    needs: dict[NeedKey, AggregatedNeed],
    pantry_index: dict[NeedKey, Decimal],
) -> tuple[dict[NeedKey, AggregatedNeed], int]:
    """Deduct positive pantry stock; needs that reach zero are dropped.

    Returns the remaining needs and how many needs received a deduction.
    """
    remaining: dict[NeedKey, AggregatedNeed] = {}
    deductions = 0

    for key, need in needs.items():
        stock = pantry_index.get(key)
        if stock is not None and stock > 0:
            deductions += 1
            left = need.total_quantity - stock
            if left > 0:
                remaining[key] = AggregatedNeed(
                    ingredient_id=need.ingredient_id,
                    ingredient_name=need.ingredient_name,
                    total_quantity=left,
                    unit_id=need.unit_id,
                    aisle_id=need.aisle_id,
                )
        else:
            remaining[key] = need

    return remaining, deductions


def _matches_need(item: ShoppingItem, need: AggregatedNeed) -> bool:
    return (
        item.label == need.ingredient_name
        and item.quantity is not None
        and item.quantity == need.total_quantity
        and item.unit_id == need.unit_id
        and item.aisle_id == need.aisle_id
    )


def reconcile(
    needs: dict[NeedKey, AggregatedNeed],
    existing: list[ShoppingItem],
    household_id: str,
    week_plan_id: str,
) -> ShoppingChanges:
    """Diff computed needs against the plan's active generated items.

    - need and item: the item takes the need's values and goes back to TODO,
      unless it already holds exactly those values (a checked-off item for
      an unchanged need stays DONE)
    - need only: a new TODO item
    - item only, or item without an ingredient: archived
    """
    changes = ShoppingChanges()

    by_key: dict[NeedKey, ShoppingItem] = {}
    # TODO items first so a stray duplicate DONE row is the one archived
    for item in sorted(existing, key=lambda i: i.status != ItemStatus.TODO):
        if item.ingredient_id is None:
            changes.archive_ids.append(item.id)
            continue
        key = need_key(item.ingredient_id, item.unit_id)
        if key in by_key:
            changes.archive_ids.append(item.id)
            continue
        by_key[key] = item

    for key, need in needs.items():
        item = by_key.pop(key, None)
        if item is None:
            changes.creates.append(
                ShoppingItem(
                    id=new_id(),
                    household_id=household_id,
                    week_plan_id=week_plan_id,
                    ingredient_id=need.ingredient_id,
                    label=need.ingredient_name,
                    quantity=need.total_quantity,
                    unit_id=need.unit_id,
                    aisle_id=need.aisle_id,
                    status=ItemStatus.TODO,
                    source=ItemSource.MEALPLAN,
                )
            )
            continue

        if _matches_need(item, need):
            continue

        changes.updates.append(
            ShoppingItem(
                id=item.id,
                household_id=item.household_id,
                week_plan_id=item.week_plan_id,
                ingredient_id=item.ingredient_id,
                label=need.ingredient_name,
                quantity=need.total_quantity,
                unit_id=need.unit_id,
                aisle_id=need.aisle_id,
                status=ItemStatus.TODO,
                source=item.source,
            )
        )

    changes.archive_ids.extend(item.id for item in by_key.values())
    return changes


def resolve_week_plan(store: Store, request: BuildRequest) -> WeekPlan:
    """Find the target plan by id or by week start, checking household ownership."""
    if (request.week_plan_id is None) == (request.week_start is None):
        raise BadRequest("Provide exactly one of weekPlanId or weekStart")

    store.require_household(request.household_id)

    if request.week_plan_id is not None:
        plan = store.get_week_plan_by_id(request.week_plan_id)
        if plan is None:
            raise NotFound(f"WeekPlan not found: {request.week_plan_id}")
    else:
        monday = normalize_to_monday(request.week_start)
        plan = store.get_week_plan(request.household_id, monday)
        if plan is None:
            raise NotFound(
                f"No WeekPlan found for household {request.household_id} week {format_date(monday)}"
            )

    if plan.household_id != request.household_id:
        raise Forbidden("WeekPlan does not belong to this household")
    return plan


def build_shopping_list(store: Store, request: BuildRequest, allow_empty: bool = False) -> BuildResult:
    """Recompute a week plan's shopping list and merge it into the stored items.

    With ``allow_empty`` a plan that has no assignments archives its
    generated items instead of failing.
    """
    plan = resolve_week_plan(store, request)

    planned = store.fetch_planned_recipes(plan.id)
    if not planned and not allow_empty:
        raise Conflict("WeekPlan has no recipe assignments")

    needs = aggregate_ingredients(planned)
    pantry_index = build_pantry_index(store.fetch_pantry(request.household_id))
    remaining, deductions = subtract_pantry(needs, pantry_index)

    existing = store.fetch_shopping_items(
        request.household_id, week_plan_id=plan.id, source=ItemSource.MEALPLAN
    )
    changes = reconcile(remaining, existing, request.household_id, plan.id)
    store.apply_shopping_changes(changes.updates, changes.archive_ids, changes.creates)

    items = store.fetch_shopping_items(request.household_id, week_plan_id=plan.id)

    logger.info(
        "Shopping list for %s: %d aggregated, %d pantry deductions, "
        "%d created, %d updated, %d archived",
        format_date(plan.week_start),
        len(needs),
        deductions,
        len(changes.creates),
        len(changes.updates),
        len(changes.archive_ids),
    )

    return BuildResult(
        week_plan_id=plan.id,
        week_start=plan.week_start,
        items=items,
        ingredients_aggregated=len(needs),
        pantry_deductions=deductions,
        created=len(changes.creates),
        updated=len(changes.updates),
        archived=len(changes.archive_ids),
    )


# ----------------------------------------------------------------------
# Item-level operations
# ----------------------------------------------------------------------


@dataclass
class ShoppingListView:
    items: list[ShoppingItem]
    done: int
    todo: int
    archived: int

    @property
    def total(self) -> int:
        return len(self.items)


def list_shopping_items(
    store: Store,
    household_id: str,
    week_plan_id: str | None = None,
    include_archived: bool = False,
    include_done: bool = True,
) -> ShoppingListView:
    """Items of a household (optionally one plan) with status counts of the active ones."""
    store.require_household(household_id)
    items = store.fetch_shopping_items(
        household_id,
        week_plan_id=week_plan_id,
        include_archived=include_archived,
        include_done=include_done,
    )
    active = store.fetch_shopping_items(household_id, week_plan_id=week_plan_id)
    return ShoppingListView(
        items=items,
        done=sum(1 for i in active if i.status == ItemStatus.DONE),
        todo=sum(1 for i in active if i.status == ItemStatus.TODO),
        archived=sum(1 for i in items if i.archived_at is not None),
    )


def _owned_item(store: Store, household_id: str, item_id: str) -> ShoppingItem:
    item = store.get_shopping_item(item_id)
    if item is None:
        raise NotFound(f"ShoppingItem not found: {item_id}")
    if item.household_id != household_id:
        raise Forbidden("ShoppingItem does not belong to this household")
    return item


def set_item_status(
    store: Store, household_id: str, item_id: str, status: ItemStatus | None = None
) -> ShoppingItem:
    """Set an item's status, or flip it between TODO and DONE when none is given."""
    item = _owned_item(store, household_id, item_id)
    if status is None:
        status = ItemStatus.DONE if item.status == ItemStatus.TODO else ItemStatus.TODO
    store.set_item_status(item.id, status)
    return store.get_shopping_item(item.id)


def archive_done_items(store: Store, household_id: str, week_plan_id: str) -> int:
    plan = store.get_week_plan_by_id(week_plan_id)
    if plan is None:
        raise NotFound(f"WeekPlan not found: {week_plan_id}")
    if plan.household_id != household_id:
        raise Forbidden("WeekPlan does not belong to this household")
    count = store.archive_done_items(household_id, week_plan_id)
    logger.info("Archived %d checked items", count)
    return count


def purge_shopping_items(store: Store, household_id: str) -> int:
    """Hard-delete every shopping item of a household, archived or not."""
    store.require_household(household_id)
    count = store.delete_shopping_items(household_id)
    logger.warning("Purged %d shopping items for household %s", count, household_id)
    return count


def add_manual_item(
    store: Store,
    household_id: str,
    label: str,
    quantity: object = None,
    unit_id: str | None = None,
    aisle_id: str | None = None,
    week_plan_id: str | None = None,
    ingredient_id: str | None = None,
) -> ShoppingItem:
    """Add a hand-written item; the builder never modifies MANUAL items."""
    store.require_household(household_id)
    if not label or not label.strip():
        raise BadRequest("label is required")
    if week_plan_id is not None:
        resolve_week_plan(store, BuildRequest(household_id=household_id, week_plan_id=week_plan_id))

    item = ShoppingItem(
        id=new_id(),
        household_id=household_id,
        week_plan_id=week_plan_id,
        ingredient_id=ingredient_id,
        label=label.strip(),
        quantity=to_decimal(quantity) if quantity is not None else None,
        unit_id=unit_id,
        aisle_id=aisle_id,
        status=ItemStatus.TODO,
        source=ItemSource.MANUAL,
    )
    store.add_shopping_item(item)
    return store.get_shopping_item(item.id)


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------


def format_qty(qty: Decimal | None) -> str:
    """Plain decimal without trailing zeros or exponent."""
    if qty is None:
        return ""
    return format(qty.normalize(), "f")


def item_to_dict(item: ShoppingItem) -> dict:
    return {
        "id": item.id,
        "ingredient_id": item.ingredient_id,
        "label": item.label,
        "quantity": format_qty(item.quantity) or None,
        "unit_id": item.unit_id,
        "unit_abbr": item.unit_abbr,
        "aisle_id": item.aisle_id,
        "aisle_name": item.aisle_name,
        "aisle_sort_order": item.aisle_sort_order,
        "status": item.status.value,
        "source": item.source.value,
        "archived_at": item.archived_at.isoformat() if item.archived_at else None,
    }


def format_shopping_markdown(items: list[ShoppingItem]) -> str:
    """Format shopping items as markdown checkboxes grouped by aisle."""
    lines = ["# Shopping List", ""]

    sections: dict[str, list[ShoppingItem]] = {}
    for item in items:
        sections.setdefault(item.aisle_name or "Other", []).append(item)

    for section, section_items in sections.items():
        lines.append(f"## {section}")
        lines.append("")
        for item in section_items:
            box = "[x]" if item.status == ItemStatus.DONE else "[ ]"
            qty_str = format_qty(item.quantity)
            unit_str = f" {item.unit_abbr}" if item.unit_abbr else ""
            if qty_str:
                lines.append(f"- {box} {qty_str}{unit_str} {item.label}")
            else:
                lines.append(f"- {box} {item.label}")
        lines.append("")

    return "\n".join(lines)


def format_shopping_json(items: list[ShoppingItem]) -> str:
    return json.dumps([item_to_dict(i) for i in items], indent=2)
