"""Payslip engine command line interface.

Usage:
    python -m payslip_engine init-db
    python -m payslip_engine create-run --company-id X --month 4 --year 2024
    python -m payslip_engine process-run --run-id X --processed-by ops
    python -m payslip_engine process-run --run-id X --processed-by ops --resume
    python -m payslip_engine lock-run --run-id X --locked-by ops
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from decimal import Decimal
from typing import Any, Awaitable, Callable
from uuid import UUID

from payslip_engine.config import get_settings
from payslip_engine.database import create_all, init_db
from payslip_engine.errors import PayrollError
from payslip_engine.logging_config import configure_logging
from payslip_engine.schemas import PayrollRunResponse
from payslip_engine.services.payroll_run_service import PayrollRunService


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def _json_default(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=_json_default))


class PayslipCli:
    """Payslip engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payslip_engine",
            description="Payroll run operations",
        )
        parser.add_argument("--log-level", help="Override LOG_LEVEL")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables in the configured database")

        create = subparsers.add_parser("create-run", help="Open a draft payroll run")
        create.add_argument("--company-id", type=parse_uuid, required=True)
        create.add_argument("--month", type=int, required=True, help="Payroll month (1-12)")
        create.add_argument("--year", type=int, required=True)

        process = subparsers.add_parser("process-run", help="Generate payslips for a run")
        process.add_argument("--run-id", type=parse_uuid, required=True)
        process.add_argument("--processed-by", required=True)
        process.add_argument(
            "--resume",
            action="store_true",
            help="Take over a run left in processing by a processor that died",
        )

        lock = subparsers.add_parser("lock-run", help="Lock a completed run")
        lock.add_argument("--run-id", type=parse_uuid, required=True)
        lock.add_argument("--locked-by", required=True)

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level or get_settings().log_level)

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "create-run": self._cmd_create_run,
            "process-run": self._cmd_process_run,
            "lock-run": self._cmd_lock_run,
        }
        handler = handlers[parsed.command]

        try:
            return asyncio.run(handler(parsed))
        except PayrollError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    @staticmethod
    def _service() -> PayrollRunService:
        _, factory = init_db()
        return PayrollRunService(factory)

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        engine, _ = init_db()
        await create_all(engine)
        print("Database schema created")
        return 0

    async def _cmd_create_run(self, args: argparse.Namespace) -> int:
        run = await self._service().create_run(args.company_id, args.month, args.year)
        _print_json(PayrollRunResponse.model_validate(run).model_dump())
        return 0

    async def _cmd_process_run(self, args: argparse.Namespace) -> int:
        summary = await self._service().process_run(args.run_id, args.processed_by, resume=args.resume)
        _print_json(
            {
                "payroll_run_id": summary.payroll_run_id,
                "status": summary.status,
                "total_employees": summary.total_employees,
                "processed_employees": summary.processed_employees,
                "failed_employees": summary.failed_employees,
                "total_gross_salary": summary.total_gross_salary,
                "total_deductions": summary.total_deductions,
                "total_net_salary": summary.total_net_salary,
                "failures": {str(k): v for k, v in summary.failures.items()},
            }
        )
        return 0 if summary.failed_employees == 0 else 2

    async def _cmd_lock_run(self, args: argparse.Namespace) -> int:
        run = await self._service().lock_run(args.run_id, args.locked_by)
        _print_json(PayrollRunResponse.model_validate(run).model_dump())
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayslipCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
