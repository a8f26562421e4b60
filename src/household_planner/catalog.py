"""Recipe catalog import: parse frontmatter notes and pantry files into the store."""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path

import frontmatter
import yaml

from household_planner.log import stderr_console
from household_planner.store import Store

logger = logging.getLogger(__name__)


def normalize_servings(raw: str | int | float | None) -> int | None:
    """Parse varied servings formats into an integer.

    Handles: "Serves 4", "4", "4 servings", "Servings: 4",
    "4 to 6 servings" (midpoint), "" -> None.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return int(raw) if raw > 0 else None

    s = str(raw).strip()
    if not s:
        return None

    m = re.search(r"(?:serves?|servings?:?)\s*(\d+)", s, re.IGNORECASE)
    if m:
        return int(m.group(1))

    m = re.match(r"(\d+)\s*(?:to|-)\s*(\d+)", s)
    if m:
        return (int(m.group(1)) + int(m.group(2))) // 2

    m = re.match(r"(\d+)\s*\w*", s)
    if m:
        val = int(m.group(1))
        if val > 0:
            return val

    return None


def parse_quantity(raw: object) -> Decimal | None:
    """Exact decimal from a number or a string like '1.5' or '3/4'."""
    if raw is None or raw == "":
        return None
    s = str(raw).strip()
    m = re.fullmatch(r"(\d+)\s*/\s*(\d+)", s)
    if m and int(m.group(2)) != 0:
        return Decimal(m.group(1)) / Decimal(m.group(2))
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def _to_str(val: object) -> str | None:
    if val is None or val == "":
        return None
    return str(val).strip()


def _as_list(val: object) -> list[str]:
    if not val:
        return []
    if isinstance(val, str):
        return [t.strip() for t in val.split(",") if t.strip()]
    return [str(t).strip() for t in val]


def discover_recipe_files(recipes_path: Path, limit: int | None = None) -> list[Path]:
    """Find all .md files in the recipes directory."""
    files = sorted(recipes_path.glob("*.md"))
    if limit:
        files = files[:limit]
    return files


class CatalogResolver:
    """Maps names to ids within a household, creating rows on first sight."""

    def __init__(self, store: Store, household_id: str) -> None:
        self.store = store
        self.household_id = household_id
        self._cache: dict[tuple[str, str], str] = {}

    def _lookup(self, table: str, name: str) -> str | None:
        key = (table, name.lower())
        if key not in self._cache:
            found = self.store.find_id_by_name(table, self.household_id, name)
            if found is None:
                return None
            self._cache[key] = found
        return self._cache[key]

    def unit(self, abbr: str | None) -> str | None:
        if not abbr:
            return None
        unit_id = self._lookup("units", abbr)
        if unit_id is None:
            unit_id = self.store.add_unit(self.household_id, abbr, abbr).id
            self._cache[("units", abbr.lower())] = unit_id
        return unit_id

    def aisle(self, name: str | None) -> str | None:
        if not name:
            return None
        aisle_id = self._lookup("aisles", name)
        if aisle_id is None:
            order = self.store.next_aisle_order(self.household_id)
            aisle_id = self.store.add_aisle(self.household_id, name, order).id
            self._cache[("aisles", name.lower())] = aisle_id
        return aisle_id

    def tag(self, name: str) -> str:
        tag_id = self._lookup("tags", name)
        if tag_id is None:
            tag_id = self.store.add_tag(self.household_id, name).id
            self._cache[("tags", name.lower())] = tag_id
        return tag_id

    def ingredient(self, name: str, unit_id: str | None, aisle_id: str | None) -> str:
        ingredient_id = self._lookup("ingredients", name)
        if ingredient_id is None:
            ingredient_id = self.store.add_ingredient(
                self.household_id, name, default_unit_id=unit_id, default_aisle_id=aisle_id
            ).id
            self._cache[("ingredients", name.lower())] = ingredient_id
        return ingredient_id


def import_recipe_file(store: Store, resolver: CatalogResolver, file_path: Path) -> str | None:
    """Import one recipe note; returns the new recipe id, or None if skipped."""
    try:
        post = frontmatter.load(file_path)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not read %s: %s", file_path.name, e)
        return None

    meta = post.metadata
    if meta.get("type") != "recipe":
        return None

    title = _to_str(meta.get("title")) or file_path.stem
    recipe_id = _to_str(meta.get("id"))
    if recipe_id and store.get_recipe(recipe_id) is not None:
        logger.warning("%s: recipe id %s already imported, skipped", file_path.name, recipe_id)
        return None

    lines: dict[str, tuple[str, Decimal, str | None]] = {}
    for entry in meta.get("ingredients") or []:
        if not isinstance(entry, dict) or not _to_str(entry.get("item")):
            continue
        qty = parse_quantity(entry.get("qty"))
        if qty is None:
            logger.warning("%s: no quantity for '%s', skipped", title, entry.get("item"))
            continue
        unit_id = resolver.unit(_to_str(entry.get("unit")))
        aisle_id = resolver.aisle(_to_str(entry.get("aisle")))
        ingredient_id = resolver.ingredient(str(entry["item"]).strip(), unit_id, aisle_id)

        if ingredient_id in lines:
            _, prev_qty, prev_unit = lines[ingredient_id]
            if prev_unit != unit_id:
                logger.warning(
                    "%s: '%s' listed twice with different units, keeping the first",
                    title,
                    entry["item"],
                )
                continue
            qty += prev_qty
        lines[ingredient_id] = (ingredient_id, qty, unit_id)

    tag_ids = list(dict.fromkeys(resolver.tag(t) for t in _as_list(meta.get("tags"))))

    recipe = store.add_recipe(
        resolver.household_id,
        title,
        servings=normalize_servings(meta.get("servings")),
        tag_ids=tag_ids,
        ingredients=list(lines.values()),
        recipe_id=recipe_id,
    )
    logger.debug(
        "%s: servings=%s tags=%d ingredients=%d",
        recipe.title,
        recipe.servings,
        len(recipe.tag_ids),
        len(recipe.ingredient_ids),
    )
    return recipe.id


def import_recipes(
    store: Store, household_id: str, recipes_path: Path, limit: int | None = None
) -> dict:
    """Import every recipe note in a directory; returns counters."""
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

    store.require_household(household_id)
    files = discover_recipe_files(recipes_path, limit=limit)
    resolver = CatalogResolver(store, household_id)

    stats = {
        "total_files": len(files),
        "imported": 0,
        "skipped": 0,
    }

    logger.info("Importing %d files from %s", len(files), recipes_path)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=stderr_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Importing recipes", total=len(files))
        for f in files:
            if import_recipe_file(store, resolver, f) is None:
                stats["skipped"] += 1
                logger.debug("SKIP (not a recipe or parse error): %s", f.name)
            else:
                stats["imported"] += 1
            progress.advance(task)

    return stats


def load_pantry_file(store: Store, household_id: str, pantry_path: Path) -> int:
    """Add pantry rows from a YAML list of {item, qty, unit}; returns rows added."""
    store.require_household(household_id)
    with open(pantry_path) as f:
        entries = yaml.safe_load(f) or []

    resolver = CatalogResolver(store, household_id)
    added = 0
    for entry in entries:
        if not isinstance(entry, dict) or not _to_str(entry.get("item")):
            continue
        qty = parse_quantity(entry.get("qty"))
        if qty is None:
            logger.warning("Pantry entry '%s' has no quantity, skipped", entry.get("item"))
            continue
        unit_id = resolver.unit(_to_str(entry.get("unit")))
        ingredient_id = resolver.ingredient(str(entry["item"]).strip(), unit_id, None)
        store.add_pantry_item(household_id, ingredient_id, qty, unit_id)
        added += 1

    return added
