"""
Command-line front-end for workspace backups on Google Drive.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from familyknows.backup import serialize_backup
from familyknows.dependencies import build_container
from familyknows.types import MergePolicy

logger = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FamilyKnows Drive backups")
    parser.add_argument(
        "--user-id",
        required=True,
        help="User whose stored Google tokens are used",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show whether Drive backup is available")
    sub.add_parser("list", help="List backups in the Drive folder")

    create = sub.add_parser("create", help="Back up a workspace to Drive")
    create.add_argument("workspace_id")

    export = sub.add_parser("export", help="Print a workspace snapshot as JSON")
    export.add_argument("workspace_id")

    restore = sub.add_parser("restore", help="Restore a backup file")
    restore.add_argument("file_id")
    restore.add_argument(
        "--policy",
        choices=[policy.value for policy in MergePolicy],
        default=MergePolicy.OVERWRITE.value,
        help="How to merge records whose id already exists",
    )

    delete = sub.add_parser("delete", help="Delete a backup file")
    delete.add_argument("file_id")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    backups = build_container().backups

    if args.command == "status":
        available = backups.is_drive_backup_available(args.user_id)
        print("connected" if available else "not connected")
        return 0 if available else 1

    if args.command == "list":
        outcome = backups.list_backups(args.user_id)
        if outcome.ok:
            for drive_file in outcome.value:
                print(
                    f"{drive_file.id}\t{drive_file.modified_time}\t"
                    f"{drive_file.size or ''}\t{drive_file.name}"
                )
    elif args.command == "create":
        outcome = backups.create_backup(args.user_id, args.workspace_id)
        if outcome.ok:
            print(f"Created {outcome.value.name} ({outcome.value.id})")
    elif args.command == "export":
        outcome = backups.export_workspace_data(args.workspace_id)
        if outcome.ok:
            print(serialize_backup(outcome.value))
    elif args.command == "restore":
        outcome = backups.restore_backup_file(
            args.user_id, args.file_id, MergePolicy(args.policy)
        )
        if outcome.ok:
            report = outcome.value
            print(json.dumps(report.as_dict(), indent=2))
            return 0 if report.success and not report.partial else 1
    else:
        outcome = backups.delete_backup(args.user_id, args.file_id)
        if outcome.ok:
            print("Deleted" if outcome.value else "Not deleted")

    if not outcome.ok:
        logger.error("%s: %s", outcome.kind.value, outcome.error.message)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
