"""Command-line interface for trophybase."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from trophybase.config import DEFAULT_SETTINGS_PATH, ApiKeys
from trophybase.enrichment import HowLongToBeatService
from trophybase.providers import ProviderError, configure_providers
from trophybase.stats import StatisticsCache
from trophybase.store import LibraryStore, OrderBy
from trophybase.sync import SyncOrchestrator, SyncResult
from trophybase.view import LibraryView


def _get_store(args: argparse.Namespace) -> LibraryStore:
    return LibraryStore.load(getattr(args, "settings", None) or DEFAULT_SETTINGS_PATH)


def _get_keys(args: argparse.Namespace) -> ApiKeys:
    return ApiKeys.from_env().with_overrides(
        steam=args.steam_api_key,
        retroachievements=args.ra_api_key,
        openxbl=args.xbox_api_key,
    )


async def _get_orchestrator(args: argparse.Namespace, store: LibraryStore) -> SyncOrchestrator:
    providers = await configure_providers(store.accounts, _get_keys(args), store)
    if not providers:
        print(
            "Error: no platform configured. Use 'account set' and provide API keys.",
            file=sys.stderr,
        )
        sys.exit(1)

    def _progress(phase: str, completed: int, total: int) -> None:
        print(f"  {phase}: {completed}/{total}", file=sys.stderr)

    return SyncOrchestrator(
        store,
        providers,
        enrichment=None if args.no_enrichment else HowLongToBeatService(),
        stats=StatisticsCache(store),
        progress=_progress,
    )


def _print_result(result: SyncResult) -> None:
    status = "cancelled" if result.cancelled else "finished"
    print(
        f"{result.mode.capitalize()} {status}: {result.merged} merged,"
        f" {result.skipped} unchanged, {result.enriched} enriched."
    )
    if result.failed_providers:
        print(f"Failed providers: {', '.join(result.failed_providers)}", file=sys.stderr)
    if not result.saved and not result.cancelled and (result.merged or result.enriched):
        print("Warning: settings could not be saved.", file=sys.stderr)


# ------------------------------------------------------------------
# Sub-command handlers
# ------------------------------------------------------------------


def cmd_account_set(args: argparse.Namespace) -> None:
    store = _get_store(args)
    changes = {
        attr: value
        for attr, value in (
            ("steam_id", args.steam),
            ("retroachievements_username", args.retroachievements),
            ("xbox_auth", args.xbox),
            ("psn_token", args.psn),
        )
        if value is not None
    }
    if not changes:
        print("Nothing to update.", file=sys.stderr)
        return
    store.update_accounts(initialised=True, **changes)
    if not asyncio.run(store.save()):
        print(f"Error: could not write {store.path}.", file=sys.stderr)
        sys.exit(1)
    print(f"Updated {', '.join(sorted(changes))}.")


def cmd_account_show(args: argparse.Namespace) -> None:
    accounts = _get_store(args).accounts
    print(f"  Steam             : {accounts.steam_id or '-'}")
    print(f"  RetroAchievements : {accounts.retroachievements_username or '-'}")
    print(f"  Xbox              : {'configured' if accounts.xbox_auth else '-'}")
    print(f"  PlayStation       : {'configured' if accounts.psn_token else '-'}")


async def _sync(args: argparse.Namespace, full: bool) -> SyncResult:
    store = _get_store(args)
    orchestrator = await _get_orchestrator(args, store)
    return await (orchestrator.scan() if full else orchestrator.refresh())


def cmd_scan(args: argparse.Namespace) -> None:
    _print_result(asyncio.run(_sync(args, full=True)))


def cmd_refresh(args: argparse.Namespace) -> None:
    _print_result(asyncio.run(_sync(args, full=False)))


async def _refresh_title(args: argparse.Namespace):
    store = _get_store(args)
    orchestrator = await _get_orchestrator(args, store)
    return await orchestrator.refresh_title(args.identifier)


def cmd_refresh_title(args: argparse.Namespace) -> None:
    try:
        game = asyncio.run(_refresh_title(args))
    except ProviderError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"{game.name}: {game.status_text}")


def cmd_stats(args: argparse.Namespace) -> None:
    stats = StatisticsCache(_get_store(args)).statistics()
    print("\n=== Library statistics ===")
    print(f"  Games               : {stats.total_games}")
    print(f"  Perfect games       : {stats.perfect_games}")
    print(
        f"  Achievements        : {stats.unlocked_count} / {stats.total_achievements}"
        f" ({stats.percent_complete}%)"
    )


def cmd_games_list(args: argparse.Namespace) -> None:
    view = LibraryView(_get_store(args), follow_store=False)
    view.set_search(args.search or "")
    games = view.page(args.page)
    if not games:
        print("No games found.")
        return
    print(f"{'Identifier':<20} {'Hours':>8}  {'Status':<32} Name")
    print("-" * 80)
    for game in games:
        hours = f"{game.playtime_hours:.1f}" if game.playtime_hours is not None else "-"
        print(f"{game.identifier:<20} {hours:>8}  {game.status_text:<32} {game.name}")
    pages = -(-view.total // view.page_size)
    print(f"\nPage {args.page} of {pages} ({view.total} games)")


def cmd_prefs_set(args: argparse.Namespace) -> None:
    store = _get_store(args)
    changes = {
        attr: value
        for attr, value in (
            ("hide_complete", args.hide_complete),
            ("hide_no_achievements", args.hide_no_achievements),
            ("hide_unstarted", args.hide_unstarted),
            ("reverse", args.reverse),
            ("order_by", OrderBy(args.order_by) if args.order_by else None),
            ("page_size", args.page_size),
        )
        if value is not None
    }
    try:
        store.update_preferences(**changes)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    if not asyncio.run(store.save()):
        print(f"Error: could not write {store.path}.", file=sys.stderr)
        sys.exit(1)
    print("Preferences updated.")


# ------------------------------------------------------------------
# Argument parser
# ------------------------------------------------------------------


def _add_toggle(parser: argparse.ArgumentParser, name: str, help_text: str) -> None:
    parser.add_argument(
        f"--{name}",
        dest=name.replace("-", "_"),
        action=argparse.BooleanOptionalAction,
        default=None,
        help=help_text,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trophybase",
        description="Achievement library sync across Steam, Xbox and RetroAchievements.",
    )
    parser.add_argument(
        "--settings",
        metavar="PATH",
        default=None,
        help=f"Path to the settings document (default: {DEFAULT_SETTINGS_PATH})",
    )
    parser.add_argument(
        "--steam-api-key",
        metavar="KEY",
        default=None,
        help="Steam Web API key (overrides STEAM_API_KEY env var)",
    )
    parser.add_argument(
        "--ra-api-key",
        metavar="KEY",
        default=None,
        help="RetroAchievements web API key (overrides RA_API_KEY env var)",
    )
    parser.add_argument(
        "--xbox-api-key",
        metavar="KEY",
        default=None,
        help="OpenXBL API key (overrides OPENXBL_API_KEY env var)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- account ---
    account_p = subparsers.add_parser("account", help="Manage platform accounts")
    account_sub = account_p.add_subparsers(dest="account_cmd", required=True)

    acc_set = account_sub.add_parser("set", help="Set platform identifiers")
    acc_set.add_argument("--steam", default=None, help="Steam 64-bit ID or vanity name")
    acc_set.add_argument("--retroachievements", default=None, help="RetroAchievements username")
    acc_set.add_argument("--xbox", default=None, help="OpenXBL API key of the Xbox account")
    acc_set.add_argument("--psn", default=None, help="PlayStation NPSSO token")
    acc_set.set_defaults(func=cmd_account_set)

    acc_show = account_sub.add_parser("show", help="Show configured accounts")
    acc_show.set_defaults(func=cmd_account_show)

    # --- scan / refresh ---
    for name, func, help_text in (
        ("scan", cmd_scan, "Fetch every configured library in full"),
        ("refresh", cmd_refresh, "Fetch recently played titles only"),
    ):
        sync_p = subparsers.add_parser(name, help=help_text)
        sync_p.add_argument(
            "--no-enrichment",
            action="store_true",
            help="Skip HowLongToBeat lookups",
        )
        sync_p.set_defaults(func=func)

    title_p = subparsers.add_parser("refresh-title", help="Re-fetch one title")
    title_p.add_argument("identifier", help="Game identifier, e.g. steam-440")
    title_p.set_defaults(func=cmd_refresh_title, no_enrichment=True)

    # --- stats ---
    stats_p = subparsers.add_parser("stats", help="Show library statistics")
    stats_p.set_defaults(func=cmd_stats)

    # --- games ---
    games_p = subparsers.add_parser("games", help="Browse the stored library")
    games_sub = games_p.add_subparsers(dest="games_cmd", required=True)

    g_list = games_sub.add_parser("list", help="List games using the saved preferences")
    g_list.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    g_list.add_argument("--search", default=None, help="Case-insensitive name filter")
    g_list.set_defaults(func=cmd_games_list)

    # --- prefs ---
    prefs_p = subparsers.add_parser("prefs", help="Manage view preferences")
    prefs_sub = prefs_p.add_subparsers(dest="prefs_cmd", required=True)

    p_set = prefs_sub.add_parser("set", help="Update filters and sort order")
    _add_toggle(p_set, "hide-complete", "Hide games with every achievement unlocked")
    _add_toggle(p_set, "hide-no-achievements", "Hide games without achievements")
    _add_toggle(p_set, "hide-unstarted", "Hide games with nothing unlocked")
    _add_toggle(p_set, "reverse", "Reverse the sort order")
    p_set.add_argument(
        "--order-by",
        choices=[o.value for o in OrderBy],
        default=None,
        help="Sort key",
    )
    p_set.add_argument("--page-size", type=int, default=None, help="Games per page")
    p_set.set_defaults(func=cmd_prefs_set)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 1
    func(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
