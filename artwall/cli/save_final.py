"""Save a finalized image: artwall save-final <base> <image>"""

import json

from artwall.services.uploads import save_final


def register(subparsers):
    """Register the save-final subcommand."""
    parser = subparsers.add_parser(
        "save-final",
        help="Store a cropped image as <base>_final.jpg, with optional manual corners",
    )
    parser.add_argument("base", help="Image base name")
    parser.add_argument("image", help="Path of the finalized image")
    parser.add_argument(
        "--corners", metavar="JSON",
        help='Four [x, y] pixel pairs, e.g. "[[10,20],[900,18],[905,700],[12,705]]"',
    )
    parser.set_defaults(func=run)


def run(args):
    """Run the save-final command."""
    corners = None
    if args.corners:
        try:
            corners = json.loads(args.corners)
        except json.JSONDecodeError as e:
            print(f"Ignoring --corners, not valid JSON: {e}")

    try:
        doc = save_final(args.store, args.library, args.base, args.image, corners=corners)
    except ValueError as e:
        print(f"Invalid image file: {e}")
        raise SystemExit(1)

    print(f"Saved {args.library.final_image_path(args.base).name}")
    if "manual_corners" in doc:
        print(f"  Manual corners: {doc['manual_corners']}")
