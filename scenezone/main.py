"""SceneZone command line entry point.

Inspects and maintains the zones stored for one scene without an
editor attached.

Typical usage::

    python -m scenezone.main --store zones --scene castle list
    python -m scenezone.main --scene castle show 3f2a9c01d4e5b6a7
    python -m scenezone.main --scene castle query 120 80
    python -m scenezone.main --scene castle validate

Programmatic usage::

    from scenezone.main import build_manager

    manager = build_manager("castle", store_dir="zones")
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from scenezone.config.settings import Settings
from scenezone.core.zone_manager import ZoneManager
from scenezone.core.zone_store import PersistenceError, create_store
from scenezone.models.zone import ZoneRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_manager(
    scene_id: str,
    store_dir: str = "",
    store_url: str = "",
    grid_size: float | None = None,
) -> ZoneManager:
    """Create a ``ZoneManager`` for *scene_id* backed by the configured store.

    Args:
        scene_id: Scene whose zones are managed.
        store_dir: Directory of the JSON file store.  Defaults to
            ``Settings.store_dir``.
        store_url: Base URL of a remote store.  Takes precedence over
            *store_dir* when set.
        grid_size: Scene grid size, used for the minimum vertex
            distance.  Defaults to ``Settings.grid_size``.

    Returns:
        A manager with an empty collection; call ``load`` before use.
    """
    overrides: dict[str, object] = {"store_url": store_url}
    if store_dir:
        overrides["store_dir"] = store_dir
    if grid_size is not None:
        overrides["grid_size"] = grid_size
    settings = Settings.from_dict(overrides)
    return ZoneManager(scene_id, create_store(settings), settings)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _describe(record: ZoneRecord) -> str:
    frame = record.frame
    flags = []
    if not record.enabled:
        flags.append("disabled")
    if record.locked:
        flags.append("locked")
    return (
        f"{record.id}  {record.kind.value:<12}  "
        f"({frame.x:g}, {frame.y:g}, {frame.width:g}x{frame.height:g})  "
        f"{len(record.vertices)} vertices  z={record.z_order}"
        + (f"  [{', '.join(flags)}]" if flags else "")
    )


async def _run(manager: ZoneManager, args: argparse.Namespace) -> int:
    await manager.load()

    if args.command == "list":
        for record in manager.zones:
            print(_describe(record))
        print(f"{len(manager)} zone(s)")
        return 0

    if args.command == "show":
        record = manager.get(args.zone_id)
        if record is None:
            logger.error("Zone %s not found in scene %s", args.zone_id, manager.scene_id)
            return 1
        print(json.dumps(record.to_dict(), indent=2))
        return 0

    if args.command == "query":
        hits = manager.point_query(args.x, args.y, only_enabled=not args.all)
        for record in reversed(hits):
            print(_describe(record))
        return 0

    if args.command == "validate":
        invalid = [r for r in manager.zones if not r.is_valid(manager.min_distance)]
        for record in invalid:
            print(f"INVALID  {_describe(record)}")
        print(f"{len(manager) - len(invalid)}/{len(manager)} zone(s) valid")
        return 1 if invalid else 0

    # clear
    deleted = await manager.delete_all()
    print(f"Deleted {len(deleted)} zone(s)")
    return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scenezone",
        description="Inspect and maintain the weather zones of a scene.",
    )
    parser.add_argument("--scene", "-s", required=True, help="Scene id.")
    parser.add_argument(
        "--store",
        default="",
        help="Directory of the JSON zone store (default: ./zones).",
    )
    parser.add_argument(
        "--store-url",
        default="",
        help="Base URL of a remote zone store. Overrides --store.",
    )
    parser.add_argument(
        "--grid-size",
        type=float,
        default=None,
        help="Scene grid size used for the minimum vertex distance.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="List every zone of the scene.")
    show = commands.add_parser("show", help="Print one zone as JSON.")
    show.add_argument("zone_id")
    query = commands.add_parser("query", help="List the zones covering a point, top-most first.")
    query.add_argument("x", type=float)
    query.add_argument("y", type=float)
    query.add_argument("--all", action="store_true", help="Include disabled zones.")
    commands.add_parser("validate", help="Report zones with an invalid polygon.")
    commands.add_parser("clear", help="Delete every zone of the scene.")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments, run the command and exit with its status."""
    args = _build_parser().parse_args(argv)

    # -- Logging setup ---------------------------------------------------
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    manager = build_manager(args.scene, args.store, args.store_url, args.grid_size)
    try:
        status = asyncio.run(_run(manager, args))
    except PersistenceError as exc:
        logger.error("Store error: %s", exc)
        sys.exit(1)
    sys.exit(status)


if __name__ == "__main__":
    main()
