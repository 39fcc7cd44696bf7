"""CLI entry point and subcommand assembly."""

import argparse
import json
import logging
import sys

from artwall.errors import ArtwallError, MissingToken
from artwall.meta import FileMetadataStore, Library
from artwall.services.replicate import ReplicateAPI, load_replicate_token
from artwall.utils import get_artwall_home


def get_client() -> ReplicateAPI:
    """Prediction client for commands that call Replicate."""
    token = load_replicate_token()
    if not token:
        raise MissingToken("REPLICATE_API_TOKEN is not set")
    return ReplicateAPI(token=token)


def print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="artwall",
        description="Artwall - AI corner detection, form fill and wall variants for painting photos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--home",
        metavar="PATH",
        help="Library root (default: $HOME/.artwall, or ARTWALL_HOME env var)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    from artwall.cli import (
        ai_form,
        corners,
        poll,
        requeue,
        save_final,
        show,
        variant_add,
        variant_delete,
        variants,
    )

    modules = [variants, variant_add, variant_delete, corners, ai_form, poll, requeue, save_final, show]
    for module in modules:
        module.register(subparsers)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    args.library = Library(get_artwall_home(args.home))
    args.store = FileMetadataStore(args.library)

    try:
        args.func(args)
    except ArtwallError as e:
        print(f"Error [{e.code}]: {e}", file=sys.stderr)
        for key, value in e.to_dict().items():
            if key in ("error", "detail") or value in (None, "", []):
                continue
            print(f"  {key}: {value}", file=sys.stderr)
        sys.exit(1)
