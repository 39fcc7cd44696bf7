"""Show command: artwall show <base>"""

from artwall.cli import print_json
from artwall.meta.models import AI_FORM, AI_PAINTING_VARIANTS, CORNER_DETECTION
from artwall.utils import format_box


def _job_line(name, record):
    line = f"  {name:<28} {record.get('status', '-')}"
    if record.get("error"):
        line += f"  error={record['error']}"
    if record.get("detail"):
        line += f"  ({record['detail']})"
    return line


def register(subparsers):
    """Register the show subcommand."""
    parser = subparsers.add_parser(
        "show",
        help="Show the job state of an image",
    )
    parser.add_argument("base", help="Image base name")
    parser.add_argument("--json", action="store_true", help="Print the raw metadata document")
    parser.set_defaults(func=run)


def run(args):
    """Run the show command."""
    doc = args.store.load(args.base)

    if not doc:
        print(f"No metadata found for: {args.base}")
        return

    if args.json:
        print_json(doc)
        return

    print()
    print(format_box(args.base, 60))

    corners = doc.get(CORNER_DETECTION)
    if isinstance(corners, dict):
        print(_job_line("corner_detection", corners))
        if corners.get("corners"):
            print(f"    corners: {corners['corners']}")
    if doc.get("manual_corners"):
        print(f"  {'manual_corners':<28} {doc['manual_corners']}")

    form = doc.get(AI_FORM)
    if isinstance(form, dict):
        print(_job_line("ai_form", form))

    section = doc.get(AI_PAINTING_VARIANTS)
    if isinstance(section, dict):
        print(f"  {'ai_painting_variants':<28} {section.get('status', '-')}")
        for name, record in sorted((section.get("variants") or {}).items()):
            print(_job_line(f"  {name}", record))
        print(f"    active: {', '.join(section.get('active_variants') or []) or '(none)'}")
    print()
