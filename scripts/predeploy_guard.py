#!/usr/bin/env python
from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from hrapprovals.services.schema_guard import verify_runtime_schema
from hrapprovals.settings import WEEKDAY_COUNT, get_settings

VERSIONS_DIR = ROOT_DIR / "hrapprovals" / "migrations" / "versions"


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _extract_revision_ids() -> list[str]:
    revisions: list[str] = []
    pattern = re.compile(r'^\s*revision\s*:\s*str\s*=\s*"([^"]+)"\s*$', re.MULTILINE)
    for path in sorted(VERSIONS_DIR.glob("*.py")):
        if path.name.startswith("__"):
            continue
        content = path.read_text(encoding="utf-8")
        match = pattern.search(content)
        if match:
            revisions.append(match.group(1).strip())
    return revisions


def _check_revision_id_lengths() -> CheckResult:
    revisions = _extract_revision_ids()
    too_long = [revision for revision in revisions if len(revision) > 32]
    return CheckResult(
        name="migration_revision_length",
        status="ok" if not too_long else "fail",
        details={
            "max_len": 32,
            "too_long": too_long,
            "total": len(revisions),
        },
    )


def _expected_alembic_heads() -> list[str]:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    script = ScriptDirectory.from_config(config)
    return sorted(script.get_heads())


def _check_single_head() -> CheckResult:
    heads = _expected_alembic_heads()
    return CheckResult(
        name="migration_single_head",
        status="ok" if len(heads) == 1 else "fail",
        details={"heads": heads},
    )


def _check_approval_settings() -> CheckResult:
    settings = get_settings()
    problems: list[str] = []
    if not (settings.jwt_secret or "").strip():
        problems.append("JWT_SECRET_NOT_SET")
    raw_days = (settings.default_work_days or "").strip()
    if len(raw_days) != WEEKDAY_COUNT or any(char not in "01" for char in raw_days):
        problems.append("DEFAULT_WORK_DAYS_INVALID")
    if settings.approval_chain_max_depth < 1:
        problems.append("APPROVAL_CHAIN_MAX_DEPTH_INVALID")
    return CheckResult(
        name="approval_settings",
        status="ok" if not problems else "fail",
        details={
            "problems": problems,
            "approval_chain_max_depth": settings.approval_chain_max_depth,
            "default_work_days": raw_days,
        },
    )


def _check_database_migration_and_schema() -> CheckResult:
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        return CheckResult(
            name="database_schema_guard",
            status="warn",
            details={"reason": "DATABASE_URL_NOT_SET"},
        )

    expected_heads = _expected_alembic_heads()
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            current_versions = [
                str(row[0]).strip()
                for row in connection.execute(text("SELECT version_num FROM alembic_version")).fetchall()
                if row and row[0] is not None
            ]
        schema_result = verify_runtime_schema(engine)
    finally:
        engine.dispose()

    missing_heads = [head for head in expected_heads if head not in current_versions]
    status = "ok"
    if missing_heads or (not schema_result.ok):
        status = "fail"

    return CheckResult(
        name="database_schema_guard",
        status=status,
        details={
            "expected_heads": expected_heads,
            "current_versions": current_versions,
            "missing_heads": missing_heads,
            "schema_guard_ok": schema_result.ok,
            "schema_guard_issues": schema_result.issues,
            "schema_guard_warnings": schema_result.warnings,
        },
    )


def main() -> int:
    checks = [
        _check_revision_id_lengths(),
        _check_single_head(),
        _check_approval_settings(),
        _check_database_migration_and_schema(),
    ]
    failed_checks = [check for check in checks if check.status == "fail"]
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": len(failed_checks) == 0,
        "checks": [
            {
                "name": check.name,
                "status": check.status,
                "details": check.details,
            }
            for check in checks
        ],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if len(failed_checks) == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
