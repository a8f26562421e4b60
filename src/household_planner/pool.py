"""Recipe pool: top-N scored suggestions for a week, without slot assignment."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date

from household_planner.errors import BadRequest, Conflict
from household_planner.models import Exclusions
from household_planner.planner import fetch_planning_inputs, filter_eligible_recipes
from household_planner.scoring import AntiRepeat, rank_scored, score_recipe
from household_planner.store import Store
from household_planner.weeks import format_date, normalize_to_monday

logger = logging.getLogger(__name__)

MIN_POOL_SIZE = 1
MAX_POOL_SIZE = 50


@dataclass
class PoolRequest:
    household_id: str
    week_start: str | date
    count: int
    exclude: Exclusions = field(default_factory=Exclusions)
    anti_repeat: AntiRepeat = field(default_factory=AntiRepeat)


@dataclass
class PoolItem:
    recipe_id: str
    title: str
    score: float | None
    sort_order: int


@dataclass
class PoolResult:
    week_start: date
    items: list[PoolItem]
    requested: int
    pool_id: str | None = None

    @property
    def generated(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "week_start": format_date(self.week_start),
            "items": [
                {
                    "recipe_id": i.recipe_id,
                    "title": i.title,
                    "score": i.score,
                    "sort_order": i.sort_order,
                }
                for i in self.items
            ],
            "meta": {"requested": self.requested, "generated": self.generated},
        }


def generate_pool_recipes(store: Store, request: PoolRequest) -> PoolResult:
    """Rank eligible recipes by pantry coverage minus anti-repeat penalty.

    There is no slot context here, so no quota bonus and no used-recipe
    set: the same recipe may be suggested for several future picks.
    """
    if request.count < MIN_POOL_SIZE or request.count > MAX_POOL_SIZE:
        raise BadRequest(f"count must be between {MIN_POOL_SIZE} and {MAX_POOL_SIZE}")

    store.require_household(request.household_id)
    week_start = normalize_to_monday(request.week_start)

    inputs = fetch_planning_inputs(
        store, request.household_id, week_start, request.anti_repeat.lookback_weeks
    )
    if not inputs.recipes:
        raise Conflict("No recipes available for this household")

    eligible = filter_eligible_recipes(inputs.recipes, request.exclude)
    if not eligible:
        raise Conflict("No eligible recipes after exclusions")

    scored = rank_scored(
        [score_recipe(r, inputs.pantry, inputs.history, request.anti_repeat) for r in eligible]
    )
    top = scored[: request.count]

    logger.info(
        "Pool for %s: %d of %d eligible recipes",
        format_date(week_start),
        len(top),
        len(eligible),
    )

    return PoolResult(
        week_start=week_start,
        items=[
            PoolItem(recipe_id=s.recipe.id, title=s.recipe.title, score=s.final_score, sort_order=i)
            for i, s in enumerate(top)
        ],
        requested=request.count,
    )


def save_pool(store: Store, household_id: str, result: PoolResult) -> PoolResult:
    """Persist a generated pool as the week's pool, replacing any earlier one."""
    store.require_household(household_id)
    result.pool_id = store.replace_pool(
        household_id,
        result.week_start,
        [(i.recipe_id, i.score, i.sort_order) for i in result.items],
    )
    return result


def get_pool(store: Store, household_id: str, week_start: str | date) -> PoolResult:
    """The stored pool for a week; an empty result when none was saved."""
    store.require_household(household_id)
    monday = normalize_to_monday(week_start)
    stored = store.fetch_pool(household_id, monday)
    if stored is None:
        return PoolResult(week_start=monday, items=[], requested=0)

    pool_id, rows = stored
    items = [
        PoolItem(recipe_id=r["recipe_id"], title=r["title"], score=r["score"], sort_order=r["sort_order"])
        for r in rows
    ]
    return PoolResult(week_start=monday, items=items, requested=len(items), pool_id=pool_id)


def clear_pool(store: Store, household_id: str, week_start: str | date) -> bool:
    store.require_household(household_id)
    return store.delete_pool(household_id, normalize_to_monday(week_start))


def format_pool_table(result: PoolResult) -> str:
    """Format pool items as a readable table."""
    lines = []
    header = f"{'#':<3} {'Score':<7} {'Recipe'}"
    lines.append(header)
    lines.append("-" * len(header))
    for item in result.items:
        score = f"{item.score:.3f}" if item.score is not None else "?"
        lines.append(f"{item.sort_order + 1:<3} {score:<7} {item.title}")
    return "\n".join(lines)


def format_pool_json(result: PoolResult) -> str:
    return json.dumps(result.to_dict(), indent=2)
