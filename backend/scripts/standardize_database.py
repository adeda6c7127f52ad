"""Copy legacy collections into the canonical tree of the configured store."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from elearning.config import get_settings
from elearning.migration import MigrationEngine
from elearning.paths import get_registry
from elearning.store import DocumentStore, build_store

LOGGER = logging.getLogger("elearning.standardize")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate legacy e-learning collections to canonical paths.")
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--legacy-only",
        action="store_true",
        help="Only migrate enrollments, progress and specialties.",
    )
    group.add_argument("--entity", help="Migrate a single entity type (user, course, module, ...).")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, store: DocumentStore) -> Dict[str, Any]:
    engine = MigrationEngine(store, get_registry())
    if args.legacy_only:
        results = await engine.migrate_legacy_data()
        return {
            "success": all(result.migrated for result in results.values()),
            "results": {name: result.model_dump() for name, result in results.items()},
        }
    if args.entity:
        result = await engine.migrate(args.entity)
        return {"success": result.migrated, "results": result.model_dump()}
    return await engine.run_database_standardization()


def main(argv: Optional[List[str]] = None, store: Optional[DocumentStore] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        report = asyncio.run(run(args, store or build_store(get_settings())))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Standardization failed: %s", exc)
        return 1
    print(json.dumps(report, default=str))
    if not report.get("success"):
        LOGGER.warning("Standardization finished with errors")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
