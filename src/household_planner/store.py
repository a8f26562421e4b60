"""SQLite persistence for recipes, pantry, week plans and shopping items."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator

from household_planner.errors import NotFound
from household_planner.models import (
    Aisle,
    HistoryEntry,
    Household,
    Ingredient,
    ItemSource,
    ItemStatus,
    MealSlot,
    PantryItem,
    PlannedIngredient,
    PlannedRecipe,
    Recipe,
    RecipeIngredient,
    ShoppingItem,
    SlotAssignment,
    Tag,
    TransitionItem,
    Unit,
    WeekPlan,
)
from household_planner.weeks import format_date, history_window, parse_date, weeks_between

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS households (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS units (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        name TEXT NOT NULL,
        abbr TEXT NOT NULL,
        FOREIGN KEY (household_id) REFERENCES households(id),
        UNIQUE(household_id, abbr)
    );

    CREATE TABLE IF NOT EXISTS aisles (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        name TEXT NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (household_id) REFERENCES households(id),
        UNIQUE(household_id, name)
    );

    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        name TEXT NOT NULL,
        FOREIGN KEY (household_id) REFERENCES households(id),
        UNIQUE(household_id, name)
    );

    CREATE TABLE IF NOT EXISTS ingredients (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        name TEXT NOT NULL,
        default_unit_id TEXT,
        default_aisle_id TEXT,
        FOREIGN KEY (household_id) REFERENCES households(id),
        UNIQUE(household_id, name)
    );

    CREATE TABLE IF NOT EXISTS recipes (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        title TEXT NOT NULL,
        servings INTEGER,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (household_id) REFERENCES households(id)
    );

    CREATE TABLE IF NOT EXISTS recipe_tags (
        recipe_id TEXT NOT NULL,
        tag_id TEXT NOT NULL,
        PRIMARY KEY (recipe_id, tag_id),
        FOREIGN KEY (recipe_id) REFERENCES recipes(id) ON DELETE CASCADE,
        FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
    );

    -- Quantities are exact decimals stored as text
    CREATE TABLE IF NOT EXISTS recipe_ingredients (
        recipe_id TEXT NOT NULL,
        ingredient_id TEXT NOT NULL,
        quantity TEXT NOT NULL,
        unit_id TEXT,
        PRIMARY KEY (recipe_id, ingredient_id),
        FOREIGN KEY (recipe_id) REFERENCES recipes(id) ON DELETE CASCADE,
        FOREIGN KEY (ingredient_id) REFERENCES ingredients(id)
    );

    CREATE TABLE IF NOT EXISTS pantry_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        household_id TEXT NOT NULL,
        ingredient_id TEXT NOT NULL,
        quantity TEXT NOT NULL,
        unit_id TEXT,
        FOREIGN KEY (household_id) REFERENCES households(id),
        FOREIGN KEY (ingredient_id) REFERENCES ingredients(id)
    );

    CREATE TABLE IF NOT EXISTS week_plans (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        week_start TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (household_id) REFERENCES households(id),
        UNIQUE(household_id, week_start)
    );

    CREATE TABLE IF NOT EXISTS week_plan_recipes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        week_plan_id TEXT NOT NULL,
        recipe_id TEXT NOT NULL,
        day_index INTEGER NOT NULL,
        meal_slot TEXT NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0,
        is_manual INTEGER NOT NULL DEFAULT 0,
        servings INTEGER,
        FOREIGN KEY (week_plan_id) REFERENCES week_plans(id) ON DELETE CASCADE,
        FOREIGN KEY (recipe_id) REFERENCES recipes(id),
        UNIQUE(week_plan_id, day_index, meal_slot)
    );

    CREATE TABLE IF NOT EXISTS shopping_items (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        week_plan_id TEXT,
        ingredient_id TEXT,
        label TEXT NOT NULL,
        quantity TEXT,
        unit_id TEXT,
        aisle_id TEXT,
        status TEXT NOT NULL DEFAULT 'TODO',
        source TEXT NOT NULL DEFAULT 'MEALPLAN',
        archived_at TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (household_id) REFERENCES households(id)
    );

    CREATE TABLE IF NOT EXISTS transition_items (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        ingredient_id TEXT,
        label TEXT NOT NULL,
        quantity TEXT,
        unit_id TEXT,
        aisle_id TEXT,
        status TEXT NOT NULL DEFAULT 'TODO',
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (household_id) REFERENCES households(id)
    );

    CREATE TABLE IF NOT EXISTS recipe_pools (
        id TEXT PRIMARY KEY,
        household_id TEXT NOT NULL,
        week_start TEXT NOT NULL,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (household_id) REFERENCES households(id),
        UNIQUE(household_id, week_start)
    );

    CREATE TABLE IF NOT EXISTS recipe_pool_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        pool_id TEXT NOT NULL,
        recipe_id TEXT NOT NULL,
        score REAL,
        sort_order INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (pool_id) REFERENCES recipe_pools(id) ON DELETE CASCADE,
        FOREIGN KEY (recipe_id) REFERENCES recipes(id)
    );

    CREATE INDEX IF NOT EXISTS idx_recipes_household
        ON recipes(household_id);
    CREATE INDEX IF NOT EXISTS idx_pantry_items_household
        ON pantry_items(household_id);
    CREATE INDEX IF NOT EXISTS idx_week_plan_recipes_plan
        ON week_plan_recipes(week_plan_id);
    CREATE INDEX IF NOT EXISTS idx_shopping_items_household
        ON shopping_items(household_id, archived_at);
"""


def new_id() -> str:
    return uuid.uuid4().hex


def to_decimal(value: object) -> Decimal:
    """Exact decimal from int, str or Decimal; floats go through str()."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _dec_or_none(raw: str | None) -> Decimal | None:
    return Decimal(raw) if raw is not None else None


def _row_to_item(row: sqlite3.Row) -> ShoppingItem:
    return ShoppingItem(
        id=row["id"],
        household_id=row["household_id"],
        week_plan_id=row["week_plan_id"],
        ingredient_id=row["ingredient_id"],
        label=row["label"],
        quantity=_dec_or_none(row["quantity"]),
        unit_id=row["unit_id"],
        aisle_id=row["aisle_id"],
        status=ItemStatus(row["status"]),
        source=ItemSource(row["source"]),
        archived_at=datetime.fromisoformat(row["archived_at"]) if row["archived_at"] else None,
        unit_abbr=row["unit_abbr"],
        aisle_name=row["aisle_name"],
        aisle_sort_order=row["aisle_sort_order"],
    )


def _row_to_transition(row: sqlite3.Row) -> TransitionItem:
    return TransitionItem(
        id=row["id"],
        household_id=row["household_id"],
        ingredient_id=row["ingredient_id"],
        label=row["label"],
        quantity=_dec_or_none(row["quantity"]),
        unit_id=row["unit_id"],
        aisle_id=row["aisle_id"],
        status=ItemStatus(row["status"]),
    )


def _row_to_week_plan(row: sqlite3.Row) -> WeekPlan:
    return WeekPlan(
        id=row["id"],
        household_id=row["household_id"],
        week_start=parse_date(row["week_start"]),
    )


class Store:
    """Household-scoped data access over a SQLite database file.

    Every operation opens its own connection, so reads may run from
    worker threads. Mutations that must apply together share one
    ``transaction()``.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and rolls back on error.

        Usage:
            with store.transaction() as conn:
                conn.execute("INSERT INTO ...")
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self.transaction() as conn:
            return conn.execute(sql, params).fetchall()

    def initialize(self) -> None:
        """Create all tables if they don't exist."""
        with self.transaction() as conn:
            conn.executescript(SCHEMA)
        logger.debug("Database initialized at %s", self.db_path)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def add_household(self, name: str, household_id: str | None = None) -> Household:
        household = Household(id=household_id or new_id(), name=name)
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO households (id, name) VALUES (?, ?)",
                (household.id, household.name),
            )
        return household

    def get_household(self, household_id: str) -> Household | None:
        rows = self._query("SELECT id, name FROM households WHERE id = ?", (household_id,))
        if not rows:
            return None
        return Household(id=rows[0]["id"], name=rows[0]["name"])

    def require_household(self, household_id: str) -> Household:
        household = self.get_household(household_id)
        if household is None:
            raise NotFound(f"Household not found: {household_id}")
        return household

    def add_unit(self, household_id: str, name: str, abbr: str, unit_id: str | None = None) -> Unit:
        unit = Unit(id=unit_id or new_id(), household_id=household_id, name=name, abbr=abbr)
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO units (id, household_id, name, abbr) VALUES (?, ?, ?, ?)",
                (unit.id, household_id, name, abbr),
            )
        return unit

    def add_aisle(
        self, household_id: str, name: str, sort_order: int = 0, aisle_id: str | None = None
    ) -> Aisle:
        aisle = Aisle(id=aisle_id or new_id(), household_id=household_id, name=name, sort_order=sort_order)
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO aisles (id, household_id, name, sort_order) VALUES (?, ?, ?, ?)",
                (aisle.id, household_id, name, sort_order),
            )
        return aisle

    def add_tag(self, household_id: str, name: str, tag_id: str | None = None) -> Tag:
        tag = Tag(id=tag_id or new_id(), household_id=household_id, name=name)
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO tags (id, household_id, name) VALUES (?, ?, ?)",
                (tag.id, household_id, name),
            )
        return tag

    def add_ingredient(
        self,
        household_id: str,
        name: str,
        default_unit_id: str | None = None,
        default_aisle_id: str | None = None,
        ingredient_id: str | None = None,
    ) -> Ingredient:
        ingredient = Ingredient(
            id=ingredient_id or new_id(),
            household_id=household_id,
            name=name,
            default_unit_id=default_unit_id,
            default_aisle_id=default_aisle_id,
        )
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO ingredients
                   (id, household_id, name, default_unit_id, default_aisle_id)
                   VALUES (?, ?, ?, ?, ?)""",
                (ingredient.id, household_id, name, default_unit_id, default_aisle_id),
            )
        return ingredient

    def find_id_by_name(self, table: str, household_id: str, name: str) -> str | None:
        """Look up a unit (by abbr), aisle, tag or ingredient id by its name."""
        column = {"units": "abbr", "aisles": "name", "tags": "name", "ingredients": "name"}[table]
        rows = self._query(
            f"SELECT id FROM {table} WHERE household_id = ? AND lower({column}) = lower(?)",
            (household_id, name),
        )
        return rows[0]["id"] if rows else None

    def next_aisle_order(self, household_id: str) -> int:
        rows = self._query(
            "SELECT COALESCE(MAX(sort_order), 0) AS top FROM aisles WHERE household_id = ?",
            (household_id,),
        )
        return rows[0]["top"] + 1

    def fetch_tag_names(self, household_id: str) -> dict[str, str]:
        rows = self._query("SELECT id, name FROM tags WHERE household_id = ?", (household_id,))
        return {r["id"]: r["name"] for r in rows}

    def add_recipe(
        self,
        household_id: str,
        title: str,
        servings: int | None = None,
        tag_ids: list[str] | None = None,
        ingredients: list[tuple[str, object, str | None]] | None = None,
        recipe_id: str | None = None,
    ) -> Recipe:
        """Insert a recipe with its tags and (ingredient_id, quantity, unit_id) lines."""
        recipe_id = recipe_id or new_id()
        tag_ids = list(tag_ids or [])
        lines = list(ingredients or [])

        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO recipes (id, household_id, title, servings) VALUES (?, ?, ?, ?)",
                (recipe_id, household_id, title, servings),
            )
            conn.executemany(
                "INSERT INTO recipe_tags (recipe_id, tag_id) VALUES (?, ?)",
                [(recipe_id, t) for t in tag_ids],
            )
            conn.executemany(
                """INSERT INTO recipe_ingredients (recipe_id, ingredient_id, quantity, unit_id)
                   VALUES (?, ?, ?, ?)""",
                [(recipe_id, ing_id, str(to_decimal(qty)), unit_id) for ing_id, qty, unit_id in lines],
            )

        return Recipe(
            id=recipe_id,
            title=title,
            household_id=household_id,
            servings=servings,
            tag_ids=tag_ids,
            ingredient_ids=[ing_id for ing_id, _qty, _unit in lines],
        )

    def _load_recipes(self, where: str, params: tuple) -> list[Recipe]:
        with self.transaction() as conn:
            rows = conn.execute(
                f"SELECT id, household_id, title, servings FROM recipes WHERE {where} ORDER BY id",
                params,
            ).fetchall()
            recipes = {
                r["id"]: Recipe(
                    id=r["id"],
                    title=r["title"],
                    household_id=r["household_id"],
                    servings=r["servings"],
                )
                for r in rows
            }
            if not recipes:
                return []
            marks = ",".join("?" * len(recipes))
            ids = list(recipes)
            for r in conn.execute(
                f"SELECT recipe_id, tag_id FROM recipe_tags WHERE recipe_id IN ({marks}) "
                "ORDER BY recipe_id, tag_id",
                ids,
            ):
                recipes[r["recipe_id"]].tag_ids.append(r["tag_id"])
            for r in conn.execute(
                f"SELECT recipe_id, ingredient_id FROM recipe_ingredients WHERE recipe_id IN ({marks}) "
                "ORDER BY recipe_id, ingredient_id",
                ids,
            ):
                recipes[r["recipe_id"]].ingredient_ids.append(r["ingredient_id"])
        return list(recipes.values())

    def fetch_recipes(self, household_id: str) -> list[Recipe]:
        """All recipes of a household with their tag and ingredient ids."""
        return self._load_recipes("household_id = ?", (household_id,))

    def get_recipe(self, recipe_id: str) -> Recipe | None:
        recipes = self._load_recipes("id = ?", (recipe_id,))
        return recipes[0] if recipes else None

    def fetch_recipe_ingredients(self, recipe_id: str) -> list[RecipeIngredient]:
        rows = self._query(
            """SELECT recipe_id, ingredient_id, quantity, unit_id FROM recipe_ingredients
               WHERE recipe_id = ? ORDER BY ingredient_id""",
            (recipe_id,),
        )
        return [
            RecipeIngredient(
                recipe_id=r["recipe_id"],
                ingredient_id=r["ingredient_id"],
                quantity=Decimal(r["quantity"]),
                unit_id=r["unit_id"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Pantry and history
    # ------------------------------------------------------------------

    def add_pantry_item(
        self, household_id: str, ingredient_id: str, quantity: object, unit_id: str | None = None
    ) -> PantryItem:
        item = PantryItem(ingredient_id=ingredient_id, quantity=to_decimal(quantity), unit_id=unit_id)
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO pantry_items (household_id, ingredient_id, quantity, unit_id)
                   VALUES (?, ?, ?, ?)""",
                (household_id, ingredient_id, str(item.quantity), unit_id),
            )
        return item

    def fetch_pantry(self, household_id: str) -> list[PantryItem]:
        rows = self._query(
            "SELECT ingredient_id, quantity, unit_id FROM pantry_items WHERE household_id = ? ORDER BY id",
            (household_id,),
        )
        return [
            PantryItem(ingredient_id=r["ingredient_id"], quantity=Decimal(r["quantity"]), unit_id=r["unit_id"])
            for r in rows
        ]

    def fetch_history(self, household_id: str, week_start: date, lookback_weeks: int) -> list[HistoryEntry]:
        """Recipes planned in the weeks before ``week_start`` within the lookback window."""
        start, end = history_window(week_start, lookback_weeks)
        rows = self._query(
            """SELECT wp.week_start, wpr.recipe_id
               FROM week_plans wp
               JOIN week_plan_recipes wpr ON wpr.week_plan_id = wp.id
               WHERE wp.household_id = ? AND wp.week_start >= ? AND wp.week_start <= ?
               ORDER BY wp.week_start DESC, wpr.day_index, wpr.sort_order""",
            (household_id, format_date(start), format_date(end)),
        )
        return [
            HistoryEntry(
                recipe_id=r["recipe_id"],
                weeks_ago=weeks_between(week_start, parse_date(r["week_start"])),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Week plans
    # ------------------------------------------------------------------

    def get_week_plan(self, household_id: str, week_start: date) -> WeekPlan | None:
        rows = self._query(
            "SELECT id, household_id, week_start FROM week_plans WHERE household_id = ? AND week_start = ?",
            (household_id, format_date(week_start)),
        )
        return _row_to_week_plan(rows[0]) if rows else None

    def get_week_plan_by_id(self, week_plan_id: str) -> WeekPlan | None:
        rows = self._query(
            "SELECT id, household_id, week_start FROM week_plans WHERE id = ?",
            (week_plan_id,),
        )
        return _row_to_week_plan(rows[0]) if rows else None

    @staticmethod
    def _upsert_week_plan(conn: sqlite3.Connection, household_id: str, week_start: date) -> WeekPlan:
        conn.execute(
            """INSERT INTO week_plans (id, household_id, week_start) VALUES (?, ?, ?)
               ON CONFLICT(household_id, week_start)
               DO UPDATE SET updated_at = CURRENT_TIMESTAMP""",
            (new_id(), household_id, format_date(week_start)),
        )
        row = conn.execute(
            "SELECT id, household_id, week_start FROM week_plans WHERE household_id = ? AND week_start = ?",
            (household_id, format_date(week_start)),
        ).fetchone()
        return _row_to_week_plan(row)

    def upsert_week_plan(self, household_id: str, week_start: date) -> WeekPlan:
        with self.transaction() as conn:
            return self._upsert_week_plan(conn, household_id, week_start)

    @staticmethod
    def _insert_assignments(conn: sqlite3.Connection, week_plan_id: str, assignments: list[SlotAssignment]) -> None:
        conn.executemany(
            """INSERT INTO week_plan_recipes
               (week_plan_id, recipe_id, day_index, meal_slot, sort_order, is_manual, servings)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    week_plan_id,
                    a.recipe_id,
                    a.day_index,
                    a.meal_slot.value,
                    a.sort_order,
                    int(a.is_manual),
                    a.servings,
                )
                for a in assignments
            ],
        )

    def save_generated_assignments(
        self,
        household_id: str,
        week_start: date,
        assignments: list[SlotAssignment],
        preserve_manual: bool = False,
    ) -> WeekPlan:
        """Upsert the plan header and replace its generated assignments atomically."""
        with self.transaction() as conn:
            plan = self._upsert_week_plan(conn, household_id, week_start)
            if preserve_manual:
                conn.execute(
                    "DELETE FROM week_plan_recipes WHERE week_plan_id = ? AND is_manual = 0",
                    (plan.id,),
                )
            else:
                conn.execute("DELETE FROM week_plan_recipes WHERE week_plan_id = ?", (plan.id,))
            self._insert_assignments(conn, plan.id, assignments)
        return plan

    def set_manual_assignment(
        self, household_id: str, week_start: date, assignment: SlotAssignment
    ) -> WeekPlan:
        """Replace whatever occupies one slot with a user-pinned recipe."""
        with self.transaction() as conn:
            plan = self._upsert_week_plan(conn, household_id, week_start)
            conn.execute(
                "DELETE FROM week_plan_recipes WHERE week_plan_id = ? AND day_index = ? AND meal_slot = ?",
                (plan.id, assignment.day_index, assignment.meal_slot.value),
            )
            self._insert_assignments(conn, plan.id, [assignment])
        return plan

    def delete_assignments(self, week_plan_id: str) -> int:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM week_plan_recipes WHERE week_plan_id = ?", (week_plan_id,))
            return cur.rowcount

    def fetch_assignments(self, week_plan_id: str, manual_only: bool = False) -> list[SlotAssignment]:
        sql = """SELECT recipe_id, day_index, meal_slot, sort_order, is_manual, servings
                 FROM week_plan_recipes WHERE week_plan_id = ?"""
        if manual_only:
            sql += " AND is_manual = 1"
        sql += " ORDER BY day_index, sort_order, id"
        return [
            SlotAssignment(
                day_index=r["day_index"],
                meal_slot=MealSlot(r["meal_slot"]),
                recipe_id=r["recipe_id"],
                sort_order=r["sort_order"],
                is_manual=bool(r["is_manual"]),
                servings=r["servings"],
            )
            for r in self._query(sql, (week_plan_id,))
        ]

    def fetch_planned_recipes(self, week_plan_id: str) -> list[PlannedRecipe]:
        """Assignments of a plan with recipe servings and ingredient lines."""
        with self.transaction() as conn:
            rows = conn.execute(
                """SELECT wpr.id, wpr.recipe_id, wpr.servings AS requested, r.servings
                   FROM week_plan_recipes wpr JOIN recipes r ON r.id = wpr.recipe_id
                   WHERE wpr.week_plan_id = ?
                   ORDER BY wpr.day_index, wpr.sort_order, wpr.id""",
                (week_plan_id,),
            ).fetchall()
            lines: dict[str, list[PlannedIngredient]] = {}
            for recipe_id in {r["recipe_id"] for r in rows}:
                lines[recipe_id] = [
                    PlannedIngredient(
                        ingredient_id=li["ingredient_id"],
                        ingredient_name=li["name"],
                        quantity=Decimal(li["quantity"]),
                        unit_id=li["unit_id"],
                        default_unit_id=li["default_unit_id"],
                        default_aisle_id=li["default_aisle_id"],
                    )
                    for li in conn.execute(
                        """SELECT ri.ingredient_id, ri.quantity, ri.unit_id,
                                  i.name, i.default_unit_id, i.default_aisle_id
                           FROM recipe_ingredients ri JOIN ingredients i ON i.id = ri.ingredient_id
                           WHERE ri.recipe_id = ?
                           ORDER BY ri.ingredient_id""",
                        (recipe_id,),
                    )
                ]
        return [
            PlannedRecipe(
                recipe_id=r["recipe_id"],
                recipe_servings=r["servings"],
                requested_servings=r["requested"],
                ingredients=list(lines[r["recipe_id"]]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Shopping items
    # ------------------------------------------------------------------

    _ITEM_SELECT = """
        SELECT si.*, u.abbr AS unit_abbr, a.name AS aisle_name, a.sort_order AS aisle_sort_order
        FROM shopping_items si
        LEFT JOIN units u ON u.id = si.unit_id
        LEFT JOIN aisles a ON a.id = si.aisle_id
    """

    def fetch_shopping_items(
        self,
        household_id: str,
        week_plan_id: str | None = None,
        source: ItemSource | None = None,
        include_archived: bool = False,
        include_done: bool = True,
    ) -> list[ShoppingItem]:
        """Shopping items ordered by aisle sort order (unknown aisles last), then label."""
        clauses = ["si.household_id = ?"]
        params: list[object] = [household_id]
        if week_plan_id is not None:
            clauses.append("si.week_plan_id = ?")
            params.append(week_plan_id)
        if source is not None:
            clauses.append("si.source = ?")
            params.append(source.value)
        if not include_archived:
            clauses.append("si.archived_at IS NULL")
        if not include_done:
            clauses.append("si.status = 'TODO'")
        sql = (
            self._ITEM_SELECT
            + " WHERE " + " AND ".join(clauses)
            + " ORDER BY a.sort_order IS NULL, a.sort_order, si.label, si.id"
        )
        return [_row_to_item(r) for r in self._query(sql, params)]

    def get_shopping_item(self, item_id: str) -> ShoppingItem | None:
        rows = self._query(self._ITEM_SELECT + " WHERE si.id = ?", (item_id,))
        return _row_to_item(rows[0]) if rows else None

    @staticmethod
    def _insert_item(conn: sqlite3.Connection, item: ShoppingItem) -> None:
        conn.execute(
            """INSERT INTO shopping_items
               (id, household_id, week_plan_id, ingredient_id, label, quantity,
                unit_id, aisle_id, status, source, archived_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                item.id,
                item.household_id,
                item.week_plan_id,
                item.ingredient_id,
                item.label,
                str(item.quantity) if item.quantity is not None else None,
                item.unit_id,
                item.aisle_id,
                item.status.value,
                item.source.value,
                item.archived_at.isoformat() if item.archived_at else None,
            ),
        )

    def add_shopping_item(self, item: ShoppingItem) -> ShoppingItem:
        with self.transaction() as conn:
            self._insert_item(conn, item)
        return item

    def apply_shopping_changes(
        self,
        updates: list[ShoppingItem],
        archive_ids: list[str],
        creates: list[ShoppingItem],
    ) -> None:
        """Apply a reconciliation batch: all of it or none of it."""
        now = datetime.now().isoformat()
        with self.transaction() as conn:
            for item in updates:
                conn.execute(
                    """UPDATE shopping_items
                       SET label = ?, quantity = ?, unit_id = ?, aisle_id = ?, status = ?,
                           archived_at = NULL, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ?""",
                    (
                        item.label,
                        str(item.quantity) if item.quantity is not None else None,
                        item.unit_id,
                        item.aisle_id,
                        item.status.value,
                        item.id,
                    ),
                )
            conn.executemany(
                "UPDATE shopping_items SET archived_at = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                [(now, item_id) for item_id in archive_ids],
            )
            for item in creates:
                self._insert_item(conn, item)

    def set_item_status(self, item_id: str, status: ItemStatus) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE shopping_items SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (status.value, item_id),
            )

    def archive_done_items(self, household_id: str, week_plan_id: str) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                """UPDATE shopping_items SET archived_at = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE household_id = ? AND week_plan_id = ? AND status = 'DONE'
                   AND archived_at IS NULL""",
                (datetime.now().isoformat(), household_id, week_plan_id),
            )
            return cur.rowcount

    def delete_shopping_items(self, household_id: str) -> int:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM shopping_items WHERE household_id = ?", (household_id,))
            return cur.rowcount

    # ------------------------------------------------------------------
    # Transition items
    # ------------------------------------------------------------------

    def add_transition_item(self, item: TransitionItem) -> TransitionItem:
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO transition_items
                   (id, household_id, ingredient_id, label, quantity, unit_id, aisle_id, status)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    item.id,
                    item.household_id,
                    item.ingredient_id,
                    item.label,
                    str(item.quantity) if item.quantity is not None else None,
                    item.unit_id,
                    item.aisle_id,
                    item.status.value,
                ),
            )
        return item

    def fetch_transition_items(self, household_id: str, include_done: bool = False) -> list[TransitionItem]:
        """Transition items in creation order."""
        sql = "SELECT * FROM transition_items WHERE household_id = ?"
        if not include_done:
            sql += " AND status = 'TODO'"
        sql += " ORDER BY created_at, rowid"
        return [_row_to_transition(r) for r in self._query(sql, (household_id,))]

    def get_transition_item(self, item_id: str) -> TransitionItem | None:
        rows = self._query("SELECT * FROM transition_items WHERE id = ?", (item_id,))
        return _row_to_transition(rows[0]) if rows else None

    def set_transition_status(self, item_id: str, status: ItemStatus) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE transition_items SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (status.value, item_id),
            )

    def delete_transition_item(self, item_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM transition_items WHERE id = ?", (item_id,))

    def apply_transition_changes(
        self,
        quantity_updates: dict[str, Decimal | None],
        creates: list[ShoppingItem],
        done_ids: list[str],
    ) -> None:
        """Merge quantities, add new items and close the applied transition items together."""
        with self.transaction() as conn:
            conn.executemany(
                """UPDATE shopping_items
                   SET quantity = ?, archived_at = NULL, updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                [
                    (str(qty) if qty is not None else None, item_id)
                    for item_id, qty in quantity_updates.items()
                ],
            )
            for item in creates:
                self._insert_item(conn, item)
            conn.executemany(
                "UPDATE transition_items SET status = 'DONE', updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                [(item_id,) for item_id in done_ids],
            )

    # ------------------------------------------------------------------
    # Recipe pools
    # ------------------------------------------------------------------

    def replace_pool(
        self, household_id: str, week_start: date, items: list[tuple[str, float, int]]
    ) -> str:
        """Store (recipe_id, score, sort_order) rows as the week's pool."""
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO recipe_pools (id, household_id, week_start) VALUES (?, ?, ?)
                   ON CONFLICT(household_id, week_start)
                   DO UPDATE SET updated_at = CURRENT_TIMESTAMP""",
                (new_id(), household_id, format_date(week_start)),
            )
            pool_id = conn.execute(
                "SELECT id FROM recipe_pools WHERE household_id = ? AND week_start = ?",
                (household_id, format_date(week_start)),
            ).fetchone()["id"]
            conn.execute("DELETE FROM recipe_pool_items WHERE pool_id = ?", (pool_id,))
            conn.executemany(
                "INSERT INTO recipe_pool_items (pool_id, recipe_id, score, sort_order) VALUES (?, ?, ?, ?)",
                [(pool_id, recipe_id, score, order) for recipe_id, score, order in items],
            )
        return pool_id

    def fetch_pool(self, household_id: str, week_start: date) -> tuple[str, list[sqlite3.Row]] | None:
        with self.transaction() as conn:
            pool = conn.execute(
                "SELECT id FROM recipe_pools WHERE household_id = ? AND week_start = ?",
                (household_id, format_date(week_start)),
            ).fetchone()
            if pool is None:
                return None
            rows = conn.execute(
                """SELECT rpi.recipe_id, rpi.score, rpi.sort_order, r.title
                   FROM recipe_pool_items rpi JOIN recipes r ON r.id = rpi.recipe_id
                   WHERE rpi.pool_id = ? ORDER BY rpi.sort_order""",
                (pool["id"],),
            ).fetchall()
        return pool["id"], rows

    def delete_pool(self, household_id: str, week_start: date) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM recipe_pools WHERE household_id = ? AND week_start = ?",
                (household_id, format_date(week_start)),
            )
            return cur.rowcount > 0
