"""Delete a variant artifact: artwall variant-delete <filename>"""

from artwall.services.variants import delete_variant


def register(subparsers):
    """Register the variant-delete subcommand."""
    parser = subparsers.add_parser(
        "variant-delete",
        help="Delete a generated variant image and its thumbnail",
    )
    parser.add_argument("filename", help="Variant file name, e.g. IMG_1_variant_loft.jpg")
    parser.set_defaults(func=run)


def run(args):
    """Run the variant-delete command."""
    result = delete_variant(args.store, args.library, args.filename)
    for name in result["deleted"]:
        print(f"Deleted {name}")
    print(f"Active variants for {result['base']}: {', '.join(result['active_variants']) or '(none)'}")
