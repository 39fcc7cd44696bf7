"""AI form command: artwall ai-form <image>"""

from artwall.cli import get_client
from artwall.meta import extract_base_name
from artwall.services.ai_form import request_ai_form, run_ai_form


def register(subparsers):
    """Register the ai-form subcommand."""
    parser = subparsers.add_parser(
        "ai-form",
        help="Request (and optionally start) the AI form rendering of an image",
    )
    parser.add_argument("image", help="Any file name of the image in images/")
    parser.add_argument(
        "--submit", action="store_true",
        help="Submit the prediction now instead of only flagging it as wanted",
    )
    parser.add_argument("--force", action="store_true", help="Regenerate a completed form")
    parser.set_defaults(func=run)


def run(args):
    """Run the ai-form command."""
    record = request_ai_form(args.store, args.library, args.image)
    base = extract_base_name(args.image)
    print(f"{base}: ai_form {record.get('status')}")

    if not args.submit:
        return

    outcome = run_ai_form(args.store, args.library, get_client(), base, force=args.force)
    if outcome.skipped:
        print(f"{base}: ai_form already {outcome.record.get('status')}, nothing to do")
    elif outcome.error is not None:
        print(f"{base}: submission failed ({outcome.error.code}), left as wanted")
    else:
        print(f"{base}: ai_form submitted ({outcome.record.get('prediction_id')})")
        print("Run `artwall poll` to download the result.")
