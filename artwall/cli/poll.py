"""Resume in-flight predictions: artwall poll"""

from artwall.cli import get_client, print_json
from artwall.services.pending import DEFAULT_WORKERS, poll_pending
from artwall.services.replicate import MAX_POLL_ATTEMPTS, POLL_INTERVAL


def register(subparsers):
    """Register the poll subcommand."""
    parser = subparsers.add_parser(
        "poll",
        help="Poll every in-flight prediction and store its result",
    )
    parser.add_argument("bases", nargs="*", metavar="BASE", help="Only these images (default: all)")
    parser.add_argument(
        "--max-attempts", type=int, default=MAX_POLL_ATTEMPTS,
        help=f"Poll attempts per prediction (default: {MAX_POLL_ATTEMPTS})",
    )
    parser.add_argument(
        "--interval", type=float, default=POLL_INTERVAL,
        help=f"Seconds between polls (default: {POLL_INTERVAL})",
    )
    parser.add_argument(
        "--requeue-after", type=float, metavar="SECONDS",
        help="First requeue in_progress jobs older than this",
    )
    parser.add_argument(
        "--workers", type=int, default=DEFAULT_WORKERS,
        help=f"Concurrent polls (default: {DEFAULT_WORKERS})",
    )
    parser.add_argument("--json", action="store_true", help="Print outcomes as JSON")
    parser.set_defaults(func=run)


def run(args):
    """Run the poll command."""
    outcomes = poll_pending(
        args.store, args.library, get_client(),
        bases=args.bases or None,
        max_attempts=args.max_attempts,
        interval=args.interval,
        requeue_after=args.requeue_after,
        workers=args.workers,
    )

    if args.json:
        print_json([o.to_dict() for o in outcomes])
        return

    if not outcomes:
        print("No in-flight predictions.")
        return

    print(f"Polled {len(outcomes)} prediction(s):")
    for outcome in outcomes:
        line = f"  {outcome.base:<24} {outcome.slot.label:<40} {outcome.status}"
        if outcome.error:
            line += f"  ({outcome.error})"
        print(line)
