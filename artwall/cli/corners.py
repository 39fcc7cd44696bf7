"""Corner detection command: artwall corners <base>"""

from artwall.cli import get_client, print_json
from artwall.services.corners import detect_corners
from artwall.services.replicate import MAX_POLL_ATTEMPTS


def register(subparsers):
    """Register the corners subcommand."""
    parser = subparsers.add_parser(
        "corners",
        help="Detect the four canvas corners of an original image",
        description="Ask a vision model for the painting corners of <base>_original.* "
                    "and store them in the image's metadata. Cached results are reused.",
    )
    parser.add_argument("base", help="Image base name")
    parser.add_argument("--force", action="store_true", help="Detect again even if corners are stored")
    parser.add_argument(
        "--max-attempts", type=int, default=MAX_POLL_ATTEMPTS,
        help=f"Poll attempts before giving up for now (default: {MAX_POLL_ATTEMPTS})",
    )
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.set_defaults(func=run)


def run(args):
    """Run the corners command."""
    result = detect_corners(
        args.store, args.library, get_client(), args.base,
        force=args.force, max_attempts=args.max_attempts,
    )

    if args.json:
        print_json(result.to_dict())
        return

    if result.error is not None:
        print(f"{args.base}: {result.status} ({result.error.code}: {result.error})")
        if result.status == "in_progress":
            print("Run `artwall poll` later to pick up the result.")
        return

    if not result.ok:
        print(f"{args.base}: corner detection is {result.status}")
        return

    source = "cached" if result.cached else "detected"
    print(f"{args.base}: corners {source} ({result.image_width}x{result.image_height})")
    for corner in result.corners:
        print(f"  {corner.label:<13} {corner.x:>6}, {corner.y:<6}  ({corner.x_percent}%, {corner.y_percent}%)")
