"""Queue a single variant: artwall variant-add <base> <name>"""

from artwall.cli import get_client, print_json
from artwall.services.variants import queue_variant


def register(subparsers):
    """Register the variant-add subcommand."""
    parser = subparsers.add_parser(
        "variant-add",
        help="Queue one wall variant for an image",
    )
    parser.add_argument("base", help="Image base name")
    parser.add_argument("name", help="Variant template name (file stem in variants/)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.set_defaults(func=run)


def run(args):
    """Run the variant-add command."""
    already_exists, summary = queue_variant(args.store, args.library, get_client(), args.base, args.name)

    if args.json:
        data = summary.to_dict()
        data["variant_name"] = args.name
        data["already_exists"] = already_exists
        print_json(data)
        return

    if already_exists:
        print(f"Variant {args.name!r} already exists for {args.base}.")
    elif summary.errors:
        err = summary.errors[0]
        print(f"Could not start {args.name!r}: {err['error']} ({err['detail']})")
    else:
        print(f"Queued {args.name!r} for {args.base}.")
    print(f"Active variants: {', '.join(summary.active_variants) or '(none)'}")
