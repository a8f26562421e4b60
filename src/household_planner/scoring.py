"""Recipe scoring: pantry coverage, anti-repeat penalty, tag-quota bonus."""

from __future__ import annotations

from dataclasses import dataclass, field

from household_planner.models import HistoryEntry, PantryItem, Recipe

DEFAULT_QUOTA_BONUS = 0.1


@dataclass
class LeftoversOverride:
    enabled: bool = False
    min_pantry_coverage_ratio: float = 0.8
    penalty_multiplier_when_covered: float = 0.2


@dataclass
class AntiRepeat:
    lookback_weeks: int = 4
    base_penalty: float = 0.5
    decay: float = 0.5
    leftovers_override: LeftoversOverride = field(default_factory=LeftoversOverride)


@dataclass
class TagQuota:
    tag_id: str
    min: int


@dataclass
class ScoredRecipe:
    recipe: Recipe
    pantry_coverage_ratio: float
    anti_repeat_penalty: float
    quota_bonus: float
    final_score: float


def compute_pantry_coverage(recipe: Recipe, pantry_items: list[PantryItem]) -> float:
    """Fraction of the recipe's distinct ingredients present in the pantry.

    Quantity and unit are ignored; a recipe without ingredients scores 0.
    """
    recipe_ids = set(recipe.ingredient_ids)
    if not recipe_ids:
        return 0.0

    pantry_ids = {p.ingredient_id for p in pantry_items}
    covered = len(recipe_ids & pantry_ids)
    return covered / len(recipe_ids)


def compute_anti_repeat_penalty(
    recipe_id: str,
    history: list[HistoryEntry],
    base_penalty: float,
    decay: float,
    leftovers_override: LeftoversOverride,
    pantry_coverage_ratio: float,
) -> float:
    """Penalty for recipes served in recent weeks.

    Each past occurrence adds ``base_penalty * decay ** (weeks_ago - 1)``;
    occurrences compound. When the leftovers override is enabled and the
    recipe's pantry coverage reaches the threshold, every term is scaled by
    ``penalty_multiplier_when_covered``.
    """
    covered = (
        leftovers_override.enabled
        and pantry_coverage_ratio >= leftovers_override.min_pantry_coverage_ratio
    )

    total = 0.0
    for entry in history:
        if entry.recipe_id != recipe_id:
            continue
        penalty = base_penalty * decay ** (entry.weeks_ago - 1)
        if covered:
            penalty *= leftovers_override.penalty_multiplier_when_covered
        total += penalty
    return total


def compute_quota_bonus(
    recipe_tag_ids: list[str],
    current_tag_counts: dict[str, int],
    tag_quotas: list[TagQuota],
    quota_bonus_value: float,
) -> float:
    """Bonus for a recipe carrying a tag still under its quota.

    Quotas are checked in the given order and the first match wins, so a
    recipe never collects more than one bonus.
    """
    tags = set(recipe_tag_ids)
    for quota in tag_quotas:
        if quota.tag_id in tags and current_tag_counts.get(quota.tag_id, 0) < quota.min:
            return quota_bonus_value
    return 0.0


def increment_tag_counts(recipe_tag_ids: list[str], current_tag_counts: dict[str, int]) -> None:
    """Count the tags of a selected recipe towards the quotas."""
    for tag_id in recipe_tag_ids:
        current_tag_counts[tag_id] = current_tag_counts.get(tag_id, 0) + 1


def score_recipe(
    recipe: Recipe,
    pantry_items: list[PantryItem],
    history: list[HistoryEntry],
    anti_repeat: AntiRepeat,
    tag_counts: dict[str, int] | None = None,
    tag_quotas: list[TagQuota] | None = None,
    quota_bonus: float = 0.0,
) -> ScoredRecipe:
    """Combine the three scoring terms: coverage + bonus - penalty."""
    coverage = compute_pantry_coverage(recipe, pantry_items)
    penalty = compute_anti_repeat_penalty(
        recipe.id,
        history,
        anti_repeat.base_penalty,
        anti_repeat.decay,
        anti_repeat.leftovers_override,
        coverage,
    )
    bonus = 0.0
    if tag_quotas:
        bonus = compute_quota_bonus(recipe.tag_ids, tag_counts or {}, tag_quotas, quota_bonus)

    return ScoredRecipe(
        recipe=recipe,
        pantry_coverage_ratio=coverage,
        anti_repeat_penalty=penalty,
        quota_bonus=bonus,
        final_score=coverage + bonus - penalty,
    )


def rank_scored(scored: list[ScoredRecipe]) -> list[ScoredRecipe]:
    """Best score first; equal scores ordered by ascending recipe id."""
    return sorted(scored, key=lambda s: (-s.final_score, s.recipe.id))
