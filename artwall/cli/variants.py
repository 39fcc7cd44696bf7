"""Variants command: artwall variants <base>"""

from artwall.cli import get_client, print_json
from artwall.services.variants import generate_variants


def register(subparsers):
    """Register the variants subcommand."""
    parser = subparsers.add_parser(
        "variants",
        help="Start wall variant generation for a finalized image",
        description="Submit one prediction per wall template for <base>_final.*. "
                    "Run `artwall poll` afterwards to download the results.",
    )
    parser.add_argument("base", help="Image base name (e.g. IMG_2106)")
    parser.add_argument(
        "--only", metavar="NAME", action="append",
        help="Only this template (repeatable)",
    )
    parser.add_argument("--force", action="store_true", help="Regenerate completed variants")
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    parser.set_defaults(func=run)


def run(args):
    """Run the variants command."""
    summary = generate_variants(
        args.store, args.library, get_client(), args.base, names=args.only, force=args.force,
    )

    if args.json:
        print_json(summary.to_dict())
        return

    print(f"{args.base}: {summary.message}")
    print(f"  Templates: {summary.total}  Started: {summary.started}  Skipped: {summary.skipped}")
    for err in summary.errors:
        print(f"  [{err['variant']}] {err['error']}: {err['detail']}")
    if summary.active_variants:
        print(f"  Active: {', '.join(summary.active_variants)}")
