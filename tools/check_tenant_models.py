"""Report mapped tables that carry ``agency_id`` but are not agency scoped.

A model is only isolated when it inherits ``AgencyOwnedMixin``. This script
walks the declarative registry and lists every mapped class whose table has an
``agency_id`` column without the mixin, so a forgotten base class shows up in
CI instead of in production. It never modifies code.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, dataclass
from typing import Iterable, Sequence

from kore.models import AgencyOwnedMixin, Base

logger = logging.getLogger("tools.check_tenant_models")

# Looked up before any agency is known, or written by the audit trail itself.
DEFAULT_ALLOWED_TABLES: frozenset[str] = frozenset({"users", "audit_log"})


@dataclass(slots=True)
class ModelReport:
    model: str
    table: str
    scoped: bool


def inspect_models(base: type = Base) -> list[ModelReport]:
    """Describe every mapped class that has an ``agency_id`` column."""

    reports: list[ModelReport] = []
    for mapper in base.registry.mappers:
        table = mapper.local_table
        if table is None or "agency_id" not in table.c:
            continue
        reports.append(
            ModelReport(
                model=mapper.class_.__name__,
                table=table.name,
                scoped=issubclass(mapper.class_, AgencyOwnedMixin),
            )
        )
    return sorted(reports, key=lambda report: report.table)


def find_unscoped(
    reports: Iterable[ModelReport], allowed: Iterable[str] = DEFAULT_ALLOWED_TABLES
) -> list[ModelReport]:
    allowed_tables = set(allowed)
    return [
        report
        for report in reports
        if not report.scoped and report.table not in allowed_tables
    ]


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--allow",
        action="append",
        default=[],
        metavar="TABLE",
        help="Additional table allowed to carry agency_id without scoping.",
    )
    parser.add_argument("--json", action="store_true", help="Print the full report as JSON.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Script entrypoint; returns 1 when an unscoped table is found."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = _parse_args(argv)

    reports = inspect_models()
    unscoped = find_unscoped(reports, DEFAULT_ALLOWED_TABLES | set(args.allow))

    if args.json:
        sys.stdout.write(
            json.dumps(
                {
                    "models": [asdict(report) for report in reports],
                    "unscoped": [report.table for report in unscoped],
                },
                indent=2,
            )
            + "\n"
        )

    for report in unscoped:
        logger.error(
            "%s (%s) has agency_id but does not inherit AgencyOwnedMixin",
            report.model,
            report.table,
        )
    if not unscoped:
        logger.info("All %d agency_id table(s) are scoped or allowed.", len(reports))
    return 1 if unscoped else 0


if __name__ == "__main__":  # pragma: no cover - CLI execution
    sys.exit(main())
