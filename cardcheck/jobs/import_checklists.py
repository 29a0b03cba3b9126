"""
Job to import checklist JSON files.

Merges each file into the checklist store the same way POST
/checklists/import does. Files use the seed corpus format.

Usage:
    python -m cardcheck.jobs.import_checklists FILE [FILE ...]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from cardcheck.db.database import async_session_factory, init_db
from cardcheck.models.checklist import ChecklistImportResult, SeedChecklistData
from cardcheck.services.learning import ChecklistLearner

logger = logging.getLogger(__name__)


async def import_file(learner: ChecklistLearner, path: Path) -> ChecklistImportResult:
    """Import one checklist file. Unreadable files are reported as failures."""
    try:
        data = SeedChecklistData.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        logger.error("Could not read %s: %s", path, e)
        return ChecklistImportResult(success=False, error_message=str(e))

    result = await learner.import_checklist(data)
    if result.success:
        logger.info(
            "Imported %s: %d cards, %d variations added",
            path.name,
            result.cards_added,
            result.variations_added,
        )
    else:
        logger.error("Import of %s failed: %s", path.name, result.error_message)
    return result


async def run_import(paths: list[Path]) -> dict[str, ChecklistImportResult]:
    """
    Import checklist files in order.

    Returns:
        Dict mapping file name to its import result
    """
    await init_db()
    learner = ChecklistLearner(async_session_factory)

    results: dict[str, ChecklistImportResult] = {}
    for path in paths:
        results[str(path)] = await import_file(learner, path)

    succeeded = sum(1 for r in results.values() if r.success)
    logger.info("Checklist import complete: %d/%d files", succeeded, len(results))
    return results


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Import checklist JSON files")
    parser.add_argument("files", nargs="+", type=Path, help="Checklist JSON files")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    results = asyncio.run(run_import(args.files))
    return 0 if all(r.success for r in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
