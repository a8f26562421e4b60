"""Weekly meal plan generation: greedy slot filling over scored recipes."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date

from household_planner.errors import BadRequest, Conflict, NotFound
from household_planner.models import (
    DAYS_IN_WEEK,
    DEFAULT_MEAL_SLOTS,
    Exclusions,
    HistoryEntry,
    MealSlot,
    PantryItem,
    Recipe,
    RequiredPlacement,
    SlotAssignment,
    SlotKey,
)
from household_planner.scoring import (
    DEFAULT_QUOTA_BONUS,
    AntiRepeat,
    ScoredRecipe,
    TagQuota,
    increment_tag_counts,
    rank_scored,
    score_recipe,
)
from household_planner.shopping import build_shopping_list, BuildRequest
from household_planner.store import Store
from household_planner.weeks import DAY_NAMES, format_date, normalize_to_monday

logger = logging.getLogger(__name__)


@dataclass
class GenerateRequest:
    household_id: str
    week_start: str | date
    days: int = DAYS_IN_WEEK
    meal_slots: list[MealSlot] = field(default_factory=lambda: list(DEFAULT_MEAL_SLOTS))
    required: list[RequiredPlacement] = field(default_factory=list)
    exclude: Exclusions = field(default_factory=Exclusions)
    anti_repeat: AntiRepeat = field(default_factory=AntiRepeat)
    tag_quotas: list[TagQuota] = field(default_factory=list)
    quota_bonus: float = DEFAULT_QUOTA_BONUS
    preserve_manual_slots: bool = False
    debug: bool = False


@dataclass
class SlotScoreBreakdown:
    day_index: int
    meal_slot: MealSlot
    recipe_id: str
    recipe_title: str
    pantry_coverage_ratio: float
    anti_repeat_penalty: float
    quota_bonus: float
    final_score: float


@dataclass
class GenerateResult:
    week_plan_id: str
    week_start: date
    slots: list[SlotAssignment]
    total_slots: int
    filled_slots: int
    preserved_slots: int = 0
    score_breakdown: list[SlotScoreBreakdown] | None = None

    def to_dict(self) -> dict:
        meta: dict = {
            "total_slots": self.total_slots,
            "filled_slots": self.filled_slots,
            "preserved_slots": self.preserved_slots,
        }
        if self.score_breakdown is not None:
            meta["score_breakdown"] = [
                {
                    "day_index": b.day_index,
                    "meal_slot": b.meal_slot.value,
                    "recipe_id": b.recipe_id,
                    "recipe_title": b.recipe_title,
                    "pantry_coverage_ratio": b.pantry_coverage_ratio,
                    "anti_repeat_penalty": b.anti_repeat_penalty,
                    "quota_bonus": b.quota_bonus,
                    "final_score": b.final_score,
                }
                for b in self.score_breakdown
            ]
        return {
            "week_plan_id": self.week_plan_id,
            "week_start": format_date(self.week_start),
            "slots": [
                {
                    "day_index": s.day_index,
                    "meal_slot": s.meal_slot.value,
                    "recipe_id": s.recipe_id,
                    "sort_order": s.sort_order,
                }
                for s in self.slots
            ],
            "meta": meta,
        }


@dataclass
class PlanningInputs:
    recipes: list[Recipe]
    pantry: list[PantryItem]
    history: list[HistoryEntry]


@dataclass
class GenerationContext:
    """Per-run mutable state threaded through the slot loop."""
    used_recipe_ids: set[str] = field(default_factory=set)
    # Required recipes wait for their own slot; the greedy pick skips them
    reserved_recipe_ids: set[str] = field(default_factory=set)
    tag_counts: dict[str, int] = field(default_factory=dict)

    def mark_used(self, recipe: Recipe) -> None:
        self.used_recipe_ids.add(recipe.id)
        increment_tag_counts(recipe.tag_ids, self.tag_counts)


def fetch_planning_inputs(
    store: Store, household_id: str, week_start: date, lookback_weeks: int
) -> PlanningInputs:
    """Fetch catalog, pantry and history in parallel; all must finish before scoring."""
    with ThreadPoolExecutor(max_workers=3) as executor:
        recipes = executor.submit(store.fetch_recipes, household_id)
        pantry = executor.submit(store.fetch_pantry, household_id)
        history = executor.submit(store.fetch_history, household_id, week_start, lookback_weeks)
        return PlanningInputs(
            recipes=recipes.result(),
            pantry=pantry.result(),
            history=history.result(),
        )


def filter_eligible_recipes(recipes: list[Recipe], exclude: Exclusions) -> list[Recipe]:
    """Drop excluded recipes and any recipe carrying an excluded tag."""
    excluded_ids = set(exclude.recipe_ids)
    excluded_tags = set(exclude.tag_ids)
    return [
        r for r in recipes
        if r.id not in excluded_ids and not excluded_tags.intersection(r.tag_ids)
    ]


def enumerate_slots(days: int, meal_slots: list[MealSlot]) -> list[SlotKey]:
    """Day-major, meal-minor slot order."""
    return [SlotKey(day, slot) for day in range(days) for slot in meal_slots]


def validate_request(request: GenerateRequest) -> list[MealSlot]:
    """Check shape of the request; returns the de-duplicated active meal slots."""
    if request.days < 1 or request.days > DAYS_IN_WEEK:
        raise BadRequest(f"days must be between 1 and {DAYS_IN_WEEK}, got {request.days}")

    meal_slots = list(dict.fromkeys(request.meal_slots))
    if not meal_slots:
        raise BadRequest("At least one meal slot is required")

    seen: set[str] = set()
    duplicates: list[str] = []
    for placement in request.required:
        if placement.recipe_id in seen and placement.recipe_id not in duplicates:
            duplicates.append(placement.recipe_id)
        seen.add(placement.recipe_id)
    if duplicates:
        raise BadRequest(
            f"Duplicate recipeId in required placements: {', '.join(duplicates)}"
        )

    taken: set[SlotKey] = set()
    for placement in request.required:
        if placement.day_index < 0 or placement.day_index >= request.days:
            raise BadRequest(f"Invalid dayIndex {placement.day_index} in required")
        if placement.meal_slot not in meal_slots:
            raise BadRequest(f"Invalid mealSlot {placement.meal_slot.value} in required")
        key = SlotKey(placement.day_index, placement.meal_slot)
        if key in taken:
            raise BadRequest(
                f"Two required placements for day {placement.day_index} {placement.meal_slot.value}"
            )
        taken.add(key)

    return meal_slots


def select_best_recipe(
    eligible: list[Recipe],
    context: GenerationContext,
    inputs: PlanningInputs,
    request: GenerateRequest,
) -> ScoredRecipe | None:
    """Highest-scoring eligible recipe not yet used in this run, or None."""
    available = [
        r for r in eligible
        if r.id not in context.used_recipe_ids and r.id not in context.reserved_recipe_ids
    ]
    if not available:
        return None

    scored = [
        score_recipe(
            r,
            inputs.pantry,
            inputs.history,
            request.anti_repeat,
            context.tag_counts,
            request.tag_quotas,
            request.quota_bonus,
        )
        for r in available
    ]
    return rank_scored(scored)[0]


def _breakdown(slot: SlotKey, scored: ScoredRecipe) -> SlotScoreBreakdown:
    return SlotScoreBreakdown(
        day_index=slot.day_index,
        meal_slot=slot.meal_slot,
        recipe_id=scored.recipe.id,
        recipe_title=scored.recipe.title,
        pantry_coverage_ratio=scored.pantry_coverage_ratio,
        anti_repeat_penalty=scored.anti_repeat_penalty,
        quota_bonus=scored.quota_bonus,
        final_score=scored.final_score,
    )


def generate_meal_plan(store: Store, request: GenerateRequest) -> GenerateResult:
    """Fill every slot of a week with a recipe and persist the assignment.

    Slots are visited day by day, meal by meal. Preserved manual slots are
    skipped, required placements are assigned as given, and every other
    slot takes the best-scoring unused eligible recipe (ties go to the
    lowest recipe id). Running out of recipes fails the whole week.
    """
    store.require_household(request.household_id)
    week_start = normalize_to_monday(request.week_start)
    meal_slots = validate_request(request)

    inputs = fetch_planning_inputs(
        store, request.household_id, week_start, request.anti_repeat.lookback_weeks
    )

    if not inputs.recipes:
        raise Conflict("No recipes available for this household")

    recipes_by_id = {r.id: r for r in inputs.recipes}
    required_by_slot: dict[SlotKey, Recipe] = {}
    for placement in request.required:
        recipe = recipes_by_id.get(placement.recipe_id)
        if recipe is None:
            raise NotFound(f"Recipe not found for required placement: {placement.recipe_id}")
        required_by_slot[SlotKey(placement.day_index, placement.meal_slot)] = recipe

    eligible = filter_eligible_recipes(inputs.recipes, request.exclude)
    context = GenerationContext()

    # Manual slots are frozen; their recipes count as used and towards quotas.
    frozen: dict[SlotKey, str] = {}
    if request.preserve_manual_slots:
        existing = store.get_week_plan(request.household_id, week_start)
        if existing is not None:
            for assignment in store.fetch_assignments(existing.id, manual_only=True):
                frozen[assignment.key] = assignment.recipe_id
        for recipe_id in frozen.values():
            recipe = recipes_by_id.get(recipe_id)
            if recipe is not None:
                context.mark_used(recipe)
            else:
                context.used_recipe_ids.add(recipe_id)

    for key in required_by_slot:
        if key in frozen:
            raise BadRequest(
                f"Required placement for day {key.day_index} {key.meal_slot.value} "
                "collides with a preserved manual slot"
            )
    for recipe in required_by_slot.values():
        if recipe.id in frozen.values():
            raise BadRequest(f"Required recipe {recipe.id} already sits in a preserved manual slot")
    context.reserved_recipe_ids.update(r.id for r in required_by_slot.values())

    all_slots = enumerate_slots(request.days, meal_slots)
    total_slots = len(all_slots)
    preserved = sum(1 for slot in all_slots if slot in frozen)

    assignments: list[SlotAssignment] = []
    breakdowns: list[SlotScoreBreakdown] = []

    for slot in all_slots:
        if slot in frozen:
            continue

        required = required_by_slot.get(slot)
        if required is not None:
            context.mark_used(required)
            context.reserved_recipe_ids.discard(required.id)
            # Scored after its own tags are counted
            if request.debug:
                scored = score_recipe(
                    required,
                    inputs.pantry,
                    inputs.history,
                    request.anti_repeat,
                    context.tag_counts,
                    request.tag_quotas,
                    request.quota_bonus,
                )
                breakdowns.append(_breakdown(slot, scored))
            chosen = required
        else:
            best = select_best_recipe(eligible, context, inputs, request)
            if best is None:
                filled = len(assignments) + preserved
                raise Conflict(
                    f"Unable to fill all slots: not enough eligible recipes. "
                    f"Filled {filled}/{total_slots}"
                )
            if request.debug:
                breakdowns.append(_breakdown(slot, best))
            chosen = best.recipe
            context.mark_used(chosen)

        logger.debug(
            "%s %s -> %s", DAY_NAMES[slot.day_index], slot.meal_slot.value, chosen.title
        )
        assignments.append(
            SlotAssignment(
                day_index=slot.day_index,
                meal_slot=slot.meal_slot,
                recipe_id=chosen.id,
                sort_order=len(assignments),
            )
        )

    plan = store.save_generated_assignments(
        request.household_id,
        week_start,
        assignments,
        preserve_manual=request.preserve_manual_slots,
    )

    logger.info(
        "Generated week plan %s for %s: %d/%d slots (%d preserved)",
        plan.id,
        format_date(week_start),
        len(assignments) + preserved,
        total_slots,
        preserved,
    )

    return GenerateResult(
        week_plan_id=plan.id,
        week_start=week_start,
        slots=assignments,
        total_slots=total_slots,
        filled_slots=len(assignments) + preserved,
        preserved_slots=preserved,
        score_breakdown=breakdowns if request.debug else None,
    )


# ----------------------------------------------------------------------
# Reading and editing a single week
# ----------------------------------------------------------------------


@dataclass
class PlannedSlot:
    day_index: int
    meal_slot: MealSlot
    sort_order: int
    is_manual: bool
    recipe_id: str
    recipe_title: str
    tags: list[str] = field(default_factory=list)


@dataclass
class WeekPlanView:
    week_plan_id: str
    week_start: date
    slots: list[PlannedSlot]


def get_week_plan(store: Store, household_id: str, week_start: str | date) -> WeekPlanView:
    """Assignments of one week with recipe titles and tag names."""
    store.require_household(household_id)
    monday = normalize_to_monday(week_start)
    plan = store.get_week_plan(household_id, monday)
    if plan is None:
        raise NotFound(f"No WeekPlan found for household {household_id} week {format_date(monday)}")

    recipes = {r.id: r for r in store.fetch_recipes(household_id)}
    tag_names = store.fetch_tag_names(household_id)

    slots = []
    for a in store.fetch_assignments(plan.id):
        recipe = recipes.get(a.recipe_id)
        slots.append(
            PlannedSlot(
                day_index=a.day_index,
                meal_slot=a.meal_slot,
                sort_order=a.sort_order,
                is_manual=a.is_manual,
                recipe_id=a.recipe_id,
                recipe_title=recipe.title if recipe else a.recipe_id,
                tags=[tag_names[t] for t in (recipe.tag_ids if recipe else []) if t in tag_names],
            )
        )
    return WeekPlanView(week_plan_id=plan.id, week_start=plan.week_start, slots=slots)


def set_slot(
    store: Store,
    household_id: str,
    week_start: str | date,
    day_index: int,
    meal_slot: MealSlot,
    recipe_id: str,
    servings: int | None = None,
) -> PlannedSlot:
    """Pin a recipe to one slot by hand and refresh the week's shopping list."""
    store.require_household(household_id)
    if day_index < 0 or day_index >= DAYS_IN_WEEK:
        raise BadRequest(f"Invalid dayIndex {day_index}")

    recipe = store.get_recipe(recipe_id)
    if recipe is None or recipe.household_id != household_id:
        raise NotFound("Recipe not found in this household")

    monday = normalize_to_monday(week_start)
    plan = store.set_manual_assignment(
        household_id,
        monday,
        SlotAssignment(
            day_index=day_index,
            meal_slot=meal_slot,
            recipe_id=recipe.id,
            sort_order=0,
            is_manual=True,
            servings=servings,
        ),
    )
    logger.info("Pinned %s to %s %s", recipe.title, DAY_NAMES[day_index], meal_slot.value)

    build_shopping_list(store, BuildRequest(household_id=household_id, week_plan_id=plan.id))

    tag_names = store.fetch_tag_names(household_id)
    return PlannedSlot(
        day_index=day_index,
        meal_slot=meal_slot,
        sort_order=0,
        is_manual=True,
        recipe_id=recipe.id,
        recipe_title=recipe.title,
        tags=[tag_names[t] for t in recipe.tag_ids if t in tag_names],
    )


def clear_week(store: Store, household_id: str, week_start: str | date) -> int:
    """Remove every assignment of a week; its generated shopping items are archived."""
    store.require_household(household_id)
    monday = normalize_to_monday(week_start)
    plan = store.get_week_plan(household_id, monday)
    if plan is None:
        return 0

    deleted = store.delete_assignments(plan.id)
    build_shopping_list(
        store,
        BuildRequest(household_id=household_id, week_plan_id=plan.id),
        allow_empty=True,
    )
    logger.info("Cleared %d assignments from week %s", deleted, format_date(monday))
    return deleted


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------


def format_plan_markdown(view: WeekPlanView) -> str:
    """Format a week plan as markdown, one table per day."""
    lines = [
        f"# Meal Plan: week of {format_date(view.week_start)}",
        "",
    ]

    days = sorted({s.day_index for s in view.slots})
    order = list(MealSlot)
    for d in days:
        day_slots = sorted(
            (s for s in view.slots if s.day_index == d),
            key=lambda s: order.index(s.meal_slot),
        )
        lines.append(f"## {DAY_NAMES[d]}")
        lines.append("")
        lines.append("| Meal | Recipe | Tags |")
        lines.append("|------|--------|------|")
        for slot in day_slots:
            pinned = " (pinned)" if slot.is_manual else ""
            lines.append(
                f"| {slot.meal_slot.value.title()} "
                f"| {slot.recipe_title}{pinned} "
                f"| {', '.join(slot.tags)} |"
            )
        lines.append("")

    unique_recipes = len({s.recipe_id for s in view.slots})
    lines.append(f"- Slots planned: {len(view.slots)}")
    lines.append(f"- Unique recipes: {unique_recipes}")
    lines.append("")

    return "\n".join(lines)


def format_plan_json(result: GenerateResult) -> str:
    """Format a generation result as JSON."""
    return json.dumps(result.to_dict(), indent=2)
