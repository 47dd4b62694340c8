from __future__ import annotations

import argparse
from collections.abc import Sequence

from stacks.circulation.data import OverdueSweepResult
from stacks.circulation.service import CirculationService
from stacks.scripts.base import Script


class CirculationSweepsScript(Script):
    """Run the overdue and reminder sweeps once, outside of Celery beat.

    Useful for catching up after an outage or when running without a
    worker. Both sweeps are idempotent, so running this alongside the
    scheduled tasks does no harm.
    """

    name = "Circulation sweeps"

    @classmethod
    def arg_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description=cls.__doc__)
        parser.add_argument(
            "--as-of",
            help="Run the sweeps as though it were this time (YYYY-MM-DD [HH:MM:SS], UTC).",
        )
        parser.add_argument(
            "--skip-reminders",
            action="store_true",
            help="Only run the overdue sweep.",
        )
        parser.add_argument(
            "--skip-overdue",
            action="store_true",
            help="Only run the reminder sweep.",
        )
        return parser

    def do_run(
        self, cmd_args: Sequence[str] | None = None
    ) -> tuple[OverdueSweepResult | None, int | None]:
        args = self.parse_command_line(cmd_args)
        as_of = self.parse_time(args.as_of)
        service = CirculationService.from_services(self._db, self.services)

        overdue: OverdueSweepResult | None = None
        reminders: int | None = None
        try:
            if not args.skip_overdue:
                overdue = service.run_overdue_sweep(as_of)
            if not args.skip_reminders:
                reminders = service.run_reminder_sweep(as_of)
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

        self.log.info(f"Overdue sweep: {overdue}. Reminders sent: {reminders}.")
        return overdue, reminders


def main() -> None:
    CirculationSweepsScript().run()
