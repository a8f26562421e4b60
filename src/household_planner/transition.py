"""Transition items: stock to buy outside any week plan, merged into the shopping list."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal

from household_planner.errors import BadRequest, Forbidden, NotFound
from household_planner.models import ItemSource, ItemStatus, ShoppingItem, TransitionItem
from household_planner.shopping import NeedKey, format_qty, need_key
from household_planner.store import Store, new_id, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    applied: int = 0
    merged: int = 0
    created: int = 0

    def to_dict(self) -> dict:
        return {"applied": self.applied, "merged": self.merged, "created": self.created}


@dataclass
class TransitionChanges:
    quantity_updates: dict[str, Decimal | None] = field(default_factory=dict)
    creates: list[ShoppingItem] = field(default_factory=list)
    done_ids: list[str] = field(default_factory=list)
    merged: int = 0


def add_quantities(a: Decimal | None, b: Decimal | None) -> Decimal | None:
    """Sum two optional quantities; a missing side leaves the other as is."""
    if a is not None and b is not None:
        return a + b
    return a if a is not None else b


def _as_shopping_item(item: TransitionItem) -> ShoppingItem:
    return ShoppingItem(
        id=new_id(),
        household_id=item.household_id,
        label=item.label,
        status=ItemStatus.TODO,
        source=ItemSource.TRANSITION,
        week_plan_id=None,
        ingredient_id=item.ingredient_id,
        quantity=item.quantity,
        unit_id=item.unit_id,
        aisle_id=item.aisle_id,
    )


def plan_transition_changes(
    todo: list[TransitionItem], active: list[ShoppingItem]
) -> TransitionChanges:
    """Decide which active items absorb each transition item and which are new.

    Items without an ingredient are always new. Items created here take
    part in later merges, so two transition items for the same
    (ingredient, unit) produce a single shopping item.
    """
    changes = TransitionChanges()

    targets: dict[NeedKey, ShoppingItem] = {}
    for item in active:
        if item.ingredient_id is not None:
            targets.setdefault(need_key(item.ingredient_id, item.unit_id), replace(item))
    created_ids: set[str] = set()

    for ti in todo:
        changes.done_ids.append(ti.id)

        target = None
        if ti.ingredient_id is not None:
            target = targets.get(need_key(ti.ingredient_id, ti.unit_id))

        if target is None:
            created = _as_shopping_item(ti)
            changes.creates.append(created)
            created_ids.add(created.id)
            if ti.ingredient_id is not None:
                targets[need_key(ti.ingredient_id, ti.unit_id)] = created
            continue

        target.quantity = add_quantities(target.quantity, ti.quantity)
        changes.merged += 1
        if target.id not in created_ids:
            changes.quantity_updates[target.id] = target.quantity

    return changes


def apply_transitions(store: Store, household_id: str) -> TransitionResult:
    """Move every TODO transition item into the household's shopping list."""
    store.require_household(household_id)
    todo = store.fetch_transition_items(household_id)
    if not todo:
        return TransitionResult()

    active = store.fetch_shopping_items(household_id)
    changes = plan_transition_changes(todo, active)
    store.apply_transition_changes(changes.quantity_updates, changes.creates, changes.done_ids)

    result = TransitionResult(
        applied=len(changes.done_ids),
        merged=changes.merged,
        created=len(changes.creates),
    )
    logger.info(
        "Applied %d transition items: %d merged, %d created",
        result.applied,
        result.merged,
        result.created,
    )
    return result


def add_transition_item(
    store: Store,
    household_id: str,
    label: str,
    quantity: object = None,
    unit_id: str | None = None,
    aisle_id: str | None = None,
    ingredient_id: str | None = None,
) -> TransitionItem:
    store.require_household(household_id)
    if not label or not label.strip():
        raise BadRequest("label is required")
    item = TransitionItem(
        id=new_id(),
        household_id=household_id,
        label=label.strip(),
        ingredient_id=ingredient_id,
        quantity=to_decimal(quantity) if quantity is not None else None,
        unit_id=unit_id,
        aisle_id=aisle_id,
    )
    return store.add_transition_item(item)


def list_transition_items(
    store: Store, household_id: str, include_done: bool = False
) -> list[TransitionItem]:
    store.require_household(household_id)
    return store.fetch_transition_items(household_id, include_done=include_done)


def _owned_transition(store: Store, household_id: str, item_id: str) -> TransitionItem:
    item = store.get_transition_item(item_id)
    if item is None:
        raise NotFound(f"TransitionItem not found: {item_id}")
    if item.household_id != household_id:
        raise Forbidden("TransitionItem does not belong to this household")
    return item


def set_transition_status(
    store: Store, household_id: str, item_id: str, status: ItemStatus | None = None
) -> TransitionItem:
    """Set a transition item's status, or flip it when none is given."""
    item = _owned_transition(store, household_id, item_id)
    if status is None:
        status = ItemStatus.DONE if item.status == ItemStatus.TODO else ItemStatus.TODO
    store.set_transition_status(item.id, status)
    return store.get_transition_item(item.id)


def delete_transition_item(store: Store, household_id: str, item_id: str) -> None:
    item = _owned_transition(store, household_id, item_id)
    store.delete_transition_item(item.id)


def format_transition_markdown(items: list[TransitionItem]) -> str:
    lines = ["# Transition Items", ""]
    for item in items:
        box = "[x]" if item.status == ItemStatus.DONE else "[ ]"
        qty_str = format_qty(item.quantity)
        text = f"{qty_str} {item.label}" if qty_str else item.label
        lines.append(f"- {box} {text} ({item.id})")
    lines.append("")
    return "\n".join(lines)
