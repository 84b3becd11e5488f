"""Verify fired catalyst signals against real price movement.

Run from cron (``catalyst-verify`` or ``python -m catalyst_desk.jobs.verify_signals``).
Each pass evaluates the checkpoint that is due for every logged signal and
records the verdict in the opportunity log.  ``--report`` only prints the
aggregated accuracy stats and never writes.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from ..config import get_settings
from ..logging_utils import get_logger, setup_logging
from ..market import PriceService
from ..opportunity_log import OpportunityLog
from ..time_utils import SystemClock
from ..verification import (
    CHECKPOINT_ALIASES,
    VerificationEngine,
    VerificationResult,
    build_metrics,
    format_report,
)

log = get_logger("jobs.verify_signals")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Verify catalyst signals against price movement")
    p.add_argument(
        "--checkpoint",
        choices=sorted(CHECKPOINT_ALIASES),
        default=None,
        help="Evaluate this checkpoint instead of auto-detecting it from signal age",
    )
    p.add_argument(
        "--min-age",
        type=float,
        default=60,
        help="Minimum signal age in minutes before it is evaluated (default 60)",
    )
    p.add_argument("--report", action="store_true", help="Print accuracy stats only; no writes")
    p.add_argument("--dry-run", action="store_true", help="Compute verdicts without persisting them")
    p.add_argument("--log", default=None, help="Opportunity log path (defaults to settings)")
    return p.parse_args(argv)


def _print_result(result: VerificationResult) -> None:
    checkpoint = result.checkpoint.value if result.checkpoint else "-"
    if result.result is not None:
        cp = result.result
        line = (
            f"  {result.keyword:<14} {checkpoint:<12} {result.status:<12} "
            f"{cp.price_change_pct:+.2f}% {cp.verdict.value}"
        )
        if cp.local_change_pct is not None:
            line += f" (local {cp.local_change_pct:+.2f}%)"
    else:
        line = f"  {result.keyword:<14} {checkpoint:<12} {result.status:<12} {result.detail}"
    print(line)


def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    opportunity_log = OpportunityLog(args.log or settings.opportunities_log_path)

    if args.report:
        entries = opportunity_log.read_all()
        print(format_report(build_metrics(entries), entries))
        return 0

    clock = SystemClock()
    prices = PriceService(settings, clock=clock)
    engine = VerificationEngine(
        prices.get_current_price,
        opportunity_log,
        clock=clock,
        fetch_delay_sec=settings.price_fetch_delay_sec,
    )
    override = CHECKPOINT_ALIASES[args.checkpoint] if args.checkpoint else None

    print(f"Log file:   {opportunity_log.path}")
    print(f"Min age:    {args.min_age:g} minutes")
    print(f"Mode:       {'DRY RUN' if args.dry_run else 'LIVE UPDATE'}")
    if override is not None:
        print(f"Checkpoint: {override.value}")
    print("")

    summary = engine.run_pass(
        checkpoint=override,
        min_age_minutes=args.min_age,
        dry_run=args.dry_run,
        on_result=_print_result,
    )
    print("")
    print(
        f"Checked {summary.checked} | skipped {summary.skipped} | "
        f"not ready {summary.not_ready} | failed {summary.failed}"
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging("verify_signals", get_settings().log_level)
    try:
        return run(args)
    except Exception as e:
        log.error("verification_fatal err=%s", str(e)[:200], exc_info=True)
        print(f"Fatal: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
