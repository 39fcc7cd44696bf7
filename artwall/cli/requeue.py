"""Requeue stuck jobs: artwall requeue"""

from artwall.services.jobs import STALE_AFTER_SECONDS
from artwall.services.pending import requeue_stale


def register(subparsers):
    """Register the requeue subcommand."""
    parser = subparsers.add_parser(
        "requeue",
        help="Reset stuck in_progress jobs back to wanted so the next pass restarts them",
    )
    parser.add_argument("bases", nargs="*", metavar="BASE", help="Only these images (default: all)")
    parser.add_argument(
        "--older-than", type=float, default=STALE_AFTER_SECONDS, metavar="SECONDS",
        help=f"Age after which an in_progress job is stuck (default: {STALE_AFTER_SECONDS})",
    )
    parser.add_argument(
        "--errors", action="store_true",
        help="Also reset failed jobs back to wanted",
    )
    parser.set_defaults(func=run)


def run(args):
    """Reset stuck (and optionally failed) jobs to wanted."""
    bases = args.bases or args.store.keys()

    total = 0
    for base in bases:
        requeued = requeue_stale(
            args.store, args.library, base,
            older_than=args.older_than, include_failed=args.errors,
        )
        for slot in requeued:
            print(f"  {base}  {slot.label}")
        total += len(requeued)

    if total:
        print(f"\nReset {total} job(s) to wanted.")
        print("Run the job's command again (e.g. `artwall variants <base>`) to restart them.")
    else:
        print("No stuck jobs found.")
