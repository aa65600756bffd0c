# service/scripts/reconcile_machine.py
"""
Manual reconciliation runner for one task-details view.

Goal:
- One fetch -> normalize -> visibility -> grouping -> partition pass.
- Print the resulting view as JSON (active, completed, progress, due buckets).
- Optionally submit one task (--submit TASK_NO --status Yes|No ...).

Run:
  PYTHONPATH=. python3 service/scripts/reconcile_machine.py \
    --serial-no SN-42 --task-no TM-0007 --role user --username ravi
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure imports work when running as a script
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from service.taskflow.config import load_settings
from service.taskflow.logctx import setup_logging
from service.taskflow.pipeline.state import AnchorKey, RoleContext
from service.taskflow.session.manager import TaskSession
from service.taskflow.tools.upload_tool import Attachment


def _load_env() -> None:
    load_dotenv(override=True)  # CWD
    load_dotenv(dotenv_path=str(REPO_ROOT / ".env"), override=True)
    load_dotenv(dotenv_path=str(REPO_ROOT / "service" / ".env"), override=True)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--serial-no", default="", help="Anchor serial number")
    ap.add_argument("--task-no", default="", help="Anchor task number (TM... = maintenance table)")
    ap.add_argument("--role", default="user", help="admin | user")
    ap.add_argument("--username", default="", help="Doer name used for visibility")
    ap.add_argument("--submit", default="", help="Task No to complete after reconciling")
    ap.add_argument("--status", default="", choices=["", "Yes", "No"])
    ap.add_argument("--remarks", default="")
    ap.add_argument("--cost", default="")
    ap.add_argument("--attach", default="", help="Path of a file to upload with the submission")
    args = ap.parse_args()

    if not args.serial_no and not args.task_no:
        ap.error("one of --serial-no / --task-no is required")

    _load_env()
    setup_logging()
    settings = load_settings()

    session = TaskSession(
        settings,
        role_ctx=RoleContext(role=args.role, username=args.username),
        anchor=AnchorKey(serial_no=args.serial_no, task_no=args.task_no),
    )

    try:
        view = session.reconcile()
        print(json.dumps(view.to_dict(), indent=2, ensure_ascii=False))
        if view.status != "ok":
            return 1

        if args.submit:
            session.check(args.submit)
            session.update(args.submit, status=args.status, remarks=args.remarks, cost=args.cost)
            if args.attach:
                session.attach(args.submit, Attachment.from_path(args.attach))

            out = session.submit(args.submit)
            if not out.ok:
                print(f"[FAIL] {args.submit}: {out.error}")
                return 2
            print(f"[DONE] {args.submit} submitted; progress={out.view.progress_percent}%")
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
