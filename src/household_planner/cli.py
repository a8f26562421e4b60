"""CLI entry point for the household planner."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def load_settings(args: argparse.Namespace) -> dict:
    from household_planner.config import apply_cli_overrides, load_config

    config = load_config(Path(args.config) if args.config else None)
    return apply_cli_overrides(
        config,
        db=args.db,
        household=args.household,
        days=getattr(args, "days", None),
        meal_slots=getattr(args, "meal_slots", None),
        lookback_weeks=getattr(args, "lookback_weeks", None),
        leftovers=getattr(args, "leftovers", False),
    )


def open_store(config: dict):
    from household_planner.store import Store

    store = Store(config["database"]["path"])
    store.initialize()
    return store


def household_id(config: dict) -> str:
    hid = config["household"]["id"]
    if not hid:
        raise ValueError("No household selected. Pass --household or set household.id in the config file")
    return str(hid)


def target_week(args: argparse.Namespace):
    from household_planner.weeks import current_monday, normalize_to_monday

    return normalize_to_monday(args.week) if args.week else current_monday()


def _split(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def resolve_exclusions(store, hid: str, recipes, exclude: str | None, exclude_tags: str | None):
    from household_planner.models import Exclusions
    from household_planner.pins import find_recipe

    recipe_ids = [find_recipe(q, recipes).id for q in _split(exclude)]
    tag_ids = []
    for name in _split(exclude_tags):
        tag_id = store.find_id_by_name("tags", hid, name)
        if tag_id is None:
            raise ValueError(f"Unknown tag '{name}'")
        tag_ids.append(tag_id)
    return Exclusions(recipe_ids=recipe_ids, tag_ids=tag_ids)


def resolve_quotas(store, hid: str, config: dict, raw_quotas: list[str]):
    """Config quotas by tag id, plus 'Tag:min' flags resolved by tag name."""
    from household_planner.config import tag_quotas_from_config
    from household_planner.scoring import TagQuota

    quotas = tag_quotas_from_config(config)
    for raw in raw_quotas:
        name, sep, minimum = raw.rpartition(":")
        if not sep or not name or not minimum.isdigit():
            raise ValueError(f"Invalid quota '{raw}'. Expected 'tag:min'")
        tag_id = store.find_id_by_name("tags", hid, name) or name
        quotas.append(TagQuota(tag_id=tag_id, min=int(minimum)))
    return quotas


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


def cmd_init(args: argparse.Namespace, config: dict) -> None:
    store = open_store(config)
    if args.name:
        household = store.add_household(args.name, household_id=args.id)
        logger.info("Created household '%s'", household.name)
        print(household.id)
    else:
        logger.info("Database ready at %s", store.db_path)


def cmd_import_recipes(args: argparse.Namespace, config: dict) -> None:
    from household_planner.catalog import import_recipes

    store = open_store(config)
    stats = import_recipes(store, household_id(config), Path(args.path), limit=args.limit)
    print(json.dumps(stats, indent=2))


def cmd_import_pantry(args: argparse.Namespace, config: dict) -> None:
    from household_planner.catalog import load_pantry_file

    store = open_store(config)
    added = load_pantry_file(store, household_id(config), Path(args.path))
    logger.info("Added %d pantry items", added)


def cmd_generate(args: argparse.Namespace, config: dict) -> None:
    from household_planner.config import anti_repeat_from_config, meal_slots_from_config
    from household_planner.pins import parse_pin, resolve_pins
    from household_planner.planner import (
        GenerateRequest,
        format_plan_json,
        format_plan_markdown,
        generate_meal_plan,
        get_week_plan,
    )

    store = open_store(config)
    hid = household_id(config)
    recipes = store.fetch_recipes(hid)

    request = GenerateRequest(
        household_id=hid,
        week_start=target_week(args),
        days=int(config["schedule"]["plan_days"]),
        meal_slots=meal_slots_from_config(config),
        required=resolve_pins([parse_pin(p) for p in args.pin], recipes),
        exclude=resolve_exclusions(store, hid, recipes, args.exclude, args.exclude_tag),
        anti_repeat=anti_repeat_from_config(config),
        tag_quotas=resolve_quotas(store, hid, config, args.quota),
        quota_bonus=float(config["quotas"]["bonus"]),
        preserve_manual_slots=args.preserve_manual,
        debug=args.debug,
    )
    result = generate_meal_plan(store, request)

    if args.format == "json":
        print(format_plan_json(result))
    else:
        print(format_plan_markdown(get_week_plan(store, hid, result.week_start)))


def cmd_pool(args: argparse.Namespace, config: dict) -> None:
    from household_planner.config import anti_repeat_from_config
    from household_planner.pool import (
        PoolRequest,
        clear_pool,
        format_pool_json,
        format_pool_table,
        generate_pool_recipes,
        get_pool,
        save_pool,
    )

    store = open_store(config)
    hid = household_id(config)
    week = target_week(args)

    if args.clear:
        removed = clear_pool(store, hid, week)
        logger.info("Pool %s", "cleared" if removed else "was already empty")
        return

    if args.show:
        result = get_pool(store, hid, week)
    else:
        recipes = store.fetch_recipes(hid)
        result = generate_pool_recipes(
            store,
            PoolRequest(
                household_id=hid,
                week_start=week,
                count=args.count,
                exclude=resolve_exclusions(store, hid, recipes, args.exclude, args.exclude_tag),
                anti_repeat=anti_repeat_from_config(config),
            ),
        )
        if args.save:
            save_pool(store, hid, result)

    if args.format == "json":
        print(format_pool_json(result))
    else:
        print(format_pool_table(result))


def cmd_show(args: argparse.Namespace, config: dict) -> None:
    from household_planner.planner import format_plan_markdown, get_week_plan

    store = open_store(config)
    view = get_week_plan(store, household_id(config), target_week(args))
    if args.format == "json":
        print(
            json.dumps(
                {
                    "week_plan_id": view.week_plan_id,
                    "week_start": view.week_start.isoformat(),
                    "slots": [
                        {
                            "day_index": s.day_index,
                            "meal_slot": s.meal_slot.value,
                            "recipe_id": s.recipe_id,
                            "recipe_title": s.recipe_title,
                            "is_manual": s.is_manual,
                            "tags": s.tags,
                        }
                        for s in view.slots
                    ],
                },
                indent=2,
            )
        )
    else:
        print(format_plan_markdown(view))


def cmd_set_slot(args: argparse.Namespace, config: dict) -> None:
    from household_planner.pins import find_recipe, parse_pin
    from household_planner.planner import set_slot

    store = open_store(config)
    hid = household_id(config)
    pin = parse_pin(args.placement)
    recipe = find_recipe(pin.recipe_query, store.fetch_recipes(hid))
    slot = set_slot(
        store,
        hid,
        target_week(args),
        pin.day,
        pin.meal_slot,
        recipe.id,
        servings=args.servings,
    )
    print(f"{slot.meal_slot.value}: {slot.recipe_title}")


def cmd_clear_week(args: argparse.Namespace, config: dict) -> None:
    from household_planner.planner import clear_week

    store = open_store(config)
    deleted = clear_week(store, household_id(config), target_week(args))
    print(f"Removed {deleted} assignments")


def cmd_shopping_build(args: argparse.Namespace, config: dict) -> None:
    from household_planner.shopping import (
        BuildRequest,
        build_shopping_list,
        format_shopping_markdown,
    )

    store = open_store(config)
    hid = household_id(config)
    if args.plan_id:
        request = BuildRequest(household_id=hid, week_plan_id=args.plan_id)
    else:
        request = BuildRequest(household_id=hid, week_start=target_week(args))
    result = build_shopping_list(store, request)

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_shopping_markdown(result.items))


def cmd_shopping_list(args: argparse.Namespace, config: dict) -> None:
    from household_planner.shopping import (
        format_shopping_json,
        format_shopping_markdown,
        list_shopping_items,
    )

    store = open_store(config)
    view = list_shopping_items(
        store,
        household_id(config),
        week_plan_id=args.plan_id,
        include_archived=args.include_archived,
        include_done=not args.hide_done,
    )
    if args.format == "json":
        print(format_shopping_json(view.items))
    else:
        print(format_shopping_markdown(view.items))
        logger.info("%d to buy, %d checked, %d archived", view.todo, view.done, view.archived)


def cmd_shopping_toggle(args: argparse.Namespace, config: dict) -> None:
    from household_planner.models import ItemStatus
    from household_planner.shopping import set_item_status

    store = open_store(config)
    status = ItemStatus(args.status.upper()) if args.status else None
    item = set_item_status(store, household_id(config), args.item_id, status)
    print(f"{item.label}: {item.status.value}")


def cmd_shopping_add(args: argparse.Namespace, config: dict) -> None:
    from household_planner.shopping import add_manual_item

    store = open_store(config)
    hid = household_id(config)
    unit_id = store.find_id_by_name("units", hid, args.unit) if args.unit else None
    aisle_id = store.find_id_by_name("aisles", hid, args.aisle) if args.aisle else None
    item = add_manual_item(
        store,
        hid,
        args.label,
        quantity=args.qty,
        unit_id=unit_id,
        aisle_id=aisle_id,
        week_plan_id=args.plan_id,
    )
    print(item.id)


def cmd_shopping_archive_done(args: argparse.Namespace, config: dict) -> None:
    from household_planner.shopping import archive_done_items

    store = open_store(config)
    count = archive_done_items(store, household_id(config), args.plan_id)
    print(f"Archived {count} items")


def cmd_shopping_purge(args: argparse.Namespace, config: dict) -> None:
    from household_planner.shopping import purge_shopping_items

    if not args.yes:
        raise ValueError("Purging deletes every shopping item of the household. Pass --yes to confirm")
    store = open_store(config)
    count = purge_shopping_items(store, household_id(config))
    print(f"Deleted {count} items")


def cmd_transition_list(args: argparse.Namespace, config: dict) -> None:
    from household_planner.transition import format_transition_markdown, list_transition_items

    store = open_store(config)
    items = list_transition_items(store, household_id(config), include_done=args.all)
    print(format_transition_markdown(items))


def cmd_transition_add(args: argparse.Namespace, config: dict) -> None:
    from household_planner.transition import add_transition_item

    store = open_store(config)
    hid = household_id(config)
    unit_id = store.find_id_by_name("units", hid, args.unit) if args.unit else None
    aisle_id = store.find_id_by_name("aisles", hid, args.aisle) if args.aisle else None
    ingredient_id = store.find_id_by_name("ingredients", hid, args.ingredient) if args.ingredient else None
    item = add_transition_item(
        store,
        hid,
        args.label,
        quantity=args.qty,
        unit_id=unit_id,
        aisle_id=aisle_id,
        ingredient_id=ingredient_id,
    )
    print(item.id)


def cmd_transition_toggle(args: argparse.Namespace, config: dict) -> None:
    from household_planner.models import ItemStatus
    from household_planner.transition import set_transition_status

    store = open_store(config)
    status = ItemStatus(args.status.upper()) if args.status else None
    item = set_transition_status(store, household_id(config), args.item_id, status)
    print(f"{item.label}: {item.status.value}")


def cmd_transition_delete(args: argparse.Namespace, config: dict) -> None:
    from household_planner.transition import delete_transition_item

    store = open_store(config)
    delete_transition_item(store, household_id(config), args.item_id)
    print(f"Deleted {args.item_id}")


def cmd_transition_apply(args: argparse.Namespace, config: dict) -> None:
    from household_planner.transition import apply_transitions

    store = open_store(config)
    result = apply_transitions(store, household_id(config))
    print(json.dumps(result.to_dict(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="household-planner",
        description="Weekly household meal planning with pantry-aware shopping lists",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config (default: ./household-planner.yaml)",
    )
    parser.add_argument("--db", type=str, default=None, help="SQLite database file")
    parser.add_argument("--household", type=str, default=None, help="Household id")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Logging verbosity (default: info)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    def add_week(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--week",
            type=str,
            default=None,
            help="Any date in the target week, YYYY-MM-DD (default: this week)",
        )

    # init
    p_init = sub.add_parser("init", help="Create the database and optionally a household")
    p_init.add_argument("--name", type=str, help="Create a household with this name")
    p_init.add_argument("--id", type=str, default=None, help="Explicit household id")
    p_init.set_defaults(func=cmd_init)

    # import-recipes
    p_imp = sub.add_parser("import-recipes", help="Import recipe notes from a directory")
    p_imp.add_argument("path", type=str, help="Directory of markdown recipe notes")
    p_imp.add_argument("--limit", type=int, default=None, help="Process only N files")
    p_imp.set_defaults(func=cmd_import_recipes)

    # import-pantry
    p_pantry = sub.add_parser("import-pantry", help="Add pantry stock from a YAML file")
    p_pantry.add_argument("path", type=str)
    p_pantry.set_defaults(func=cmd_import_pantry)

    # generate
    p_gen = sub.add_parser("generate", help="Generate the week's meal plan")
    add_week(p_gen)
    p_gen.add_argument("--days", type=int, default=None)
    p_gen.add_argument("--meal-slots", type=str, help="Comma-separated, e.g. lunch,dinner")
    p_gen.add_argument("--lookback-weeks", type=int, default=None)
    p_gen.add_argument(
        "--leftovers",
        action="store_true",
        help="Soften the repeat penalty for recipes the pantry mostly covers",
    )
    p_gen.add_argument(
        "--pin",
        action="append",
        default=[],
        help='Require a recipe in a slot. Format: "day:meal:Recipe". '
             "day: a day name or 0-6. Repeatable.",
    )
    p_gen.add_argument("--exclude", type=str, help="Comma-separated recipe ids or titles")
    p_gen.add_argument("--exclude-tag", type=str, help="Comma-separated tag names")
    p_gen.add_argument(
        "--quota",
        action="append",
        default=[],
        help='Minimum recipes with a tag. Format: "tag:min". Repeatable.',
    )
    p_gen.add_argument(
        "--preserve-manual",
        action="store_true",
        help="Keep hand-set slots instead of replacing the whole week",
    )
    p_gen.add_argument("--debug", action="store_true", help="Include score breakdown")
    p_gen.add_argument(
        "--format", type=str, choices=["json", "markdown"], default="markdown"
    )
    p_gen.set_defaults(func=cmd_generate)

    # pool
    p_pool = sub.add_parser("pool", help="Top-scored recipe suggestions for a week")
    add_week(p_pool)
    p_pool.add_argument("--count", type=int, default=10)
    p_pool.add_argument("--exclude", type=str, help="Comma-separated recipe ids or titles")
    p_pool.add_argument("--exclude-tag", type=str, help="Comma-separated tag names")
    p_pool.add_argument("--lookback-weeks", type=int, default=None)
    p_pool.add_argument("--leftovers", action="store_true")
    mode = p_pool.add_mutually_exclusive_group()
    mode.add_argument("--save", action="store_true", help="Store as the week's pool")
    mode.add_argument("--show", action="store_true", help="Print the stored pool")
    mode.add_argument("--clear", action="store_true", help="Delete the stored pool")
    p_pool.add_argument(
        "--format", type=str, choices=["json", "table"], default="table"
    )
    p_pool.set_defaults(func=cmd_pool)

    # show
    p_show = sub.add_parser("show", help="Print a stored week plan")
    add_week(p_show)
    p_show.add_argument(
        "--format", type=str, choices=["json", "markdown"], default="markdown"
    )
    p_show.set_defaults(func=cmd_show)

    # set-slot
    p_set = sub.add_parser("set-slot", help="Put a recipe in one slot by hand")
    add_week(p_set)
    p_set.add_argument("placement", type=str, help='"day:meal:Recipe"')
    p_set.add_argument("--servings", type=int, default=None)
    p_set.set_defaults(func=cmd_set_slot)

    # clear-week
    p_clear = sub.add_parser("clear-week", help="Remove every slot of a week")
    add_week(p_clear)
    p_clear.set_defaults(func=cmd_clear_week)

    # shopping
    p_shop = sub.add_parser("shopping", help="Shopping list commands")
    shop_sub = p_shop.add_subparsers(dest="shopping_command", required=True)

    p_build = shop_sub.add_parser("build", help="Rebuild the list from a week plan")
    add_week(p_build)
    p_build.add_argument("--plan-id", type=str, default=None)
    p_build.add_argument(
        "--format", type=str, choices=["json", "markdown"], default="markdown"
    )
    p_build.set_defaults(func=cmd_shopping_build)

    p_list = shop_sub.add_parser("list", help="Print shopping items")
    p_list.add_argument("--plan-id", type=str, default=None)
    p_list.add_argument("--include-archived", action="store_true")
    p_list.add_argument("--hide-done", action="store_true")
    p_list.add_argument(
        "--format", type=str, choices=["json", "markdown"], default="markdown"
    )
    p_list.set_defaults(func=cmd_shopping_list)

    p_toggle = shop_sub.add_parser("toggle", help="Check or uncheck an item")
    p_toggle.add_argument("item_id", type=str)
    p_toggle.add_argument("--status", choices=["todo", "done"], default=None)
    p_toggle.set_defaults(func=cmd_shopping_toggle)

    p_add = shop_sub.add_parser("add", help="Add a hand-written item")
    p_add.add_argument("label", type=str)
    p_add.add_argument("--qty", type=str, default=None)
    p_add.add_argument("--unit", type=str, default=None, help="Unit abbreviation")
    p_add.add_argument("--aisle", type=str, default=None, help="Aisle name")
    p_add.add_argument("--plan-id", type=str, default=None)
    p_add.set_defaults(func=cmd_shopping_add)

    p_arch = shop_sub.add_parser("archive-done", help="Archive checked items of a plan")
    p_arch.add_argument("plan_id", type=str)
    p_arch.set_defaults(func=cmd_shopping_archive_done)

    p_purge = shop_sub.add_parser("purge", help="Delete all shopping items of the household")
    p_purge.add_argument("--yes", action="store_true", help="Confirm the deletion")
    p_purge.set_defaults(func=cmd_shopping_purge)

    # transition
    p_trans = sub.add_parser("transition", help="Items to buy outside any week plan")
    trans_sub = p_trans.add_subparsers(dest="transition_command", required=True)

    p_tlist = trans_sub.add_parser("list", help="Print transition items")
    p_tlist.add_argument("--all", action="store_true", help="Include applied (DONE) items")
    p_tlist.set_defaults(func=cmd_transition_list)

    p_tadd = trans_sub.add_parser("add", help="Add a transition item")
    p_tadd.add_argument("label", type=str)
    p_tadd.add_argument("--qty", type=str, default=None)
    p_tadd.add_argument("--unit", type=str, default=None, help="Unit abbreviation")
    p_tadd.add_argument("--aisle", type=str, default=None, help="Aisle name")
    p_tadd.add_argument("--ingredient", type=str, default=None, help="Ingredient name to merge on")
    p_tadd.set_defaults(func=cmd_transition_add)

    p_ttoggle = trans_sub.add_parser("toggle", help="Check or uncheck a transition item")
    p_ttoggle.add_argument("item_id", type=str)
    p_ttoggle.add_argument("--status", choices=["todo", "done"], default=None)
    p_ttoggle.set_defaults(func=cmd_transition_toggle)

    p_tdel = trans_sub.add_parser("delete", help="Delete a transition item")
    p_tdel.add_argument("item_id", type=str)
    p_tdel.set_defaults(func=cmd_transition_delete)

    p_tapply = trans_sub.add_parser("apply", help="Merge open transition items into the shopping list")
    p_tapply.set_defaults(func=cmd_transition_apply)

    return parser


def main(argv: list[str] | None = None) -> None:
    from household_planner.errors import PlannerError
    from household_planner.log import setup_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    log_file = Path(args.log_file) if args.log_file else None
    setup_logging(level=args.log_level, log_file=log_file)

    try:
        config = load_settings(args)
        args.func(args, config)
    except PlannerError as e:
        logger.error("%s (%d %s)", e.message, e.status_code, e.kind)
        sys.exit(1)
    except ValueError as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
