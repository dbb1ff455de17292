import argparse
import json
import logging
import re
import sys

from clipdeck import __version__
from clipdeck.app import ClipdeckApp
from clipdeck.config import DB_PATH, LIST_DISPLAY_COUNT, LOG_PATH, PREVIEW_LENGTH
from clipdeck.errors import ClipdeckError, ValidationError
from clipdeck.hotkeys import format_keys
from clipdeck.models import (
    ActivityKind,
    ActivityStep,
    Category,
    ConnectionType,
    FieldType,
    Flag,
    Item,
    Scope,
    StructuredField,
    TriggerKind,
)
from clipdeck.utils import ensure_dirs, item_text, truncate_text

MASK = "••••••••"
SECRET_FIELD_TYPES = (FieldType.PASSWORD, FieldType.API_KEY)
FIELD_RE = re.compile(r"^(?P<label>[^=\[]+)(?:\[(?P<type>\w+)\])?=(?P<value>.*)$", re.DOTALL)


def configure_logging(verbose: bool = False) -> None:
    ensure_dirs()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler(sys.stderr),
        ],
    )


def parse_field(raw: str) -> StructuredField:
    """Parse ``LABEL=VALUE`` or ``LABEL[type]=VALUE``."""
    match = FIELD_RE.match(raw)
    if match is None or not match.group("label").strip():
        raise ValidationError(f"field must look like LABEL=VALUE or LABEL[type]=VALUE: {raw}")
    try:
        field_type = FieldType(match.group("type") or FieldType.TEXT.value)
    except ValueError:
        raise ValidationError(f"unknown field type: {match.group('type')}") from None
    return StructuredField(id="", label=match.group("label").strip(), value=match.group("value"), type=field_type)


def format_row(item: Item) -> str:
    marks = ("📌" if item.pinned else "  ") + ("⭐" if item.starred else "  ")
    tags = f" #{' #'.join(sorted(item.tags))}" if item.tags else ""
    preview = truncate_text(masked_text(item), PREVIEW_LENGTH)
    return f"{item.id:>5} {marks} [{item.category.value}] {item.title}{tags}  {preview}"


def masked_text(item: Item, reveal: bool = False) -> str:
    if not item.is_structured or reveal:
        return item_text(item)
    return "\n".join(f"{f.label}: {MASK if f.type in SECRET_FIELD_TYPES else f.value}" for f in item.fields)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def read_text(value: str | None) -> str:
    if value is None or value == "-":
        return sys.stdin.read()
    return value


# -- item commands -----------------------------------------------------------


def cmd_new(app: ClipdeckApp, args) -> int:
    changes = {}
    if args.content is not None:
        changes["content"] = read_text(args.content)
    if args.field:
        changes["fields"] = [parse_field(f) for f in args.field]
    item = app.store.create(args.category, is_structured=args.structured, title=args.title)
    if changes:
        item = app.store.update(item.id, **changes)
    print(item.id)
    return 0


def cmd_show(app: ClipdeckApp, args) -> int:
    item = app.store.get(args.id)
    print(f"{item.title}")
    print(f"category: {item.category.value}")
    print(f"tags:     {', '.join(sorted(item.tags)) or '-'}")
    print(f"flags:    {'pinned ' if item.pinned else ''}{'starred ' if item.starred else ''}{'deleted' if item.deleted else ''}".rstrip())
    print(f"updated:  {item.updated_at:%Y-%m-%d %H:%M}")
    print()
    print(masked_text(item, reveal=args.reveal))
    return 0


def cmd_edit(app: ClipdeckApp, args) -> int:
    changes = {}
    if args.title is not None:
        changes["title"] = args.title
    if args.content is not None:
        changes["content"] = read_text(args.content)
    if args.field:
        changes["fields"] = [parse_field(f) for f in args.field]
    if args.category is not None:
        app.store.recategorize(args.id, args.category)
    if changes:
        app.store.update(args.id, **changes)
    return 0


def cmd_list(app: ClipdeckApp, args) -> int:
    if args.counts:
        for facet, count in app.queries.counts().items():
            print(f"{facet:<20} {count}")
        return 0
    items = app.queries.query(args.facet, args.search)
    if not items:
        print("(no items)")
        return 0
    for item in items[: args.limit]:
        print(format_row(item))
    if len(items) > args.limit:
        print(f"... {len(items) - args.limit} more")
    return 0


def cmd_tags(app: ClipdeckApp, args) -> int:
    for tag in app.queries.tags():
        print(tag)
    return 0


def cmd_delete(app: ClipdeckApp, args) -> int:
    app.store.soft_delete(args.id)
    print("Moved to Recycle Bin")
    return 0


def cmd_restore(app: ClipdeckApp, args) -> int:
    app.store.restore(args.id)
    print("Restored")
    return 0


def cmd_purge(app: ClipdeckApp, args) -> int:
    app.store.purge(args.id)
    print("Permanently deleted")
    return 0


def cmd_empty_bin(app: ClipdeckApp, args) -> int:
    print(f"Permanently deleted {app.store.empty_recycle_bin()} items")
    return 0


def cmd_flag(flag: Flag, value: bool):
    def handler(app: ClipdeckApp, args) -> int:
        app.store.set_flag(args.id, flag, value)
        return 0

    return handler


def cmd_tag(app: ClipdeckApp, args) -> int:
    for tag in args.tags:
        if args.remove:
            app.store.remove_tag(args.id, tag)
        else:
            app.store.add_tag(args.id, tag)
    return 0


# -- automation and assistant ------------------------------------------------


def cmd_capture(app: ClipdeckApp, args) -> int:
    result = app.capture.record(read_text(args.text), source_app=args.app)
    if result is None:
        print("(nothing captured)")
        return 0
    print_json({"item_id": result.item.id, "created": result.created, **result.firing.to_dict()})
    return 0


def cmd_fire(app: ClipdeckApp, args) -> int:
    result = app.engine.fire(args.trigger, item_id=args.item, application=args.app)
    print_json(result.to_dict())
    return 0 if result.ok else 1


def cmd_ask(app: ClipdeckApp, args) -> int:
    if args.suggest:
        for workflow in app.matcher.match(args.text).candidates:
            print(f"{workflow.command:<12} {workflow.name}")
        return 0
    item = app.store.get(args.item) if args.item is not None else None
    request = app.matcher.submit(args.text, item)
    if request is None:
        return 0
    print_json({
        "workflow": request.workflow.command if request.workflow else None,
        "message": request.display,
        "prompt": request.prompt,
    })
    return 0


def build_steps(args) -> list[ActivityStep]:
    steps = []
    for kind in args.activity:
        kind = ActivityKind(kind)
        params = {}
        if kind == ActivityKind.ADD_TAGS:
            params["tags"] = list(args.tag)
        elif kind == ActivityKind.RUN_SCRIPT and args.script:
            params["script"] = args.script
        elif kind == ActivityKind.SEND_NOTIFICATION and args.message:
            params["message"] = args.message
        elif kind == ActivityKind.SYNC_TO_CLOUD and args.connection:
            params["connection"] = args.connection.strip()
        steps.append(ActivityStep(kind, params))
    return steps


def cmd_workflows(app: ClipdeckApp, args) -> int:
    if args.action == "list":
        for wf in app.engine.workflows():
            state = "on " if wf.enabled else "off"
            triggers = ",".join(sorted(t.value for t in wf.triggers))
            activities = " -> ".join(s.kind.value for s in wf.activities)
            scope = "all apps" if wf.scope == Scope.ALL else ", ".join(wf.applications)
            print(f"{wf.id:<14} {state} {wf.name}  [{triggers}] {activities} ({scope})")
        return 0
    if args.action == "add":
        wf = app.engine.create(
            args.name,
            triggers=args.trigger,
            activities=build_steps(args),
            enabled=not args.disabled,
            scope=Scope.SPECIFIC if args.app else Scope.ALL,
            applications=args.app,
            pattern=args.pattern,
        )
        print(wf.id)
    elif args.action == "enable":
        app.engine.set_enabled(args.id, True)
    elif args.action == "disable":
        app.engine.set_enabled(args.id, False)
    elif args.action == "remove":
        app.engine.remove(args.id)
    app.save()
    return 0


def cmd_hotkeys(app: ClipdeckApp, args) -> int:
    if args.action == "list":
        for category, bindings in app.hotkeys.grouped().items():
            if not bindings:
                continue
            print(category.value.title())
            for b in bindings:
                state = "" if b.enabled else " (disabled)"
                print(f"  {b.action:<40} {format_keys(b.keys)}{state}")
        return 0
    if args.action == "bind":
        app.hotkeys.bind(args.target, args.keys)
    elif args.action == "clear":
        app.hotkeys.clear(args.target)
    elif args.action == "enable":
        app.hotkeys.set_enabled(args.target, True)
    elif args.action == "disable":
        app.hotkeys.set_enabled(args.target, False)
    app.save()
    return 0


def cmd_connections(app: ClipdeckApp, args) -> int:
    if args.action == "list":
        for c in app.connections.connections():
            account = f" as {c.account_id}" if c.account_id else ""
            pending = " (connecting)" if app.connections.is_pending(c.id) else ""
            print(f"{c.id:<14} {c.name} [{c.type.value}] {c.status.value}{account}{pending}")
        return 0
    if args.action == "add":
        print(app.connections.add(args.name, args.type).id)
    elif args.action == "connect":
        print(app.connections.connect(args.id))
    elif args.action == "connected":
        app.connections.on_connected(args.id, args.account)
    elif args.action == "error":
        app.connections.on_error(args.id)
    elif args.action == "disconnect":
        app.connections.disconnect(args.id)
    elif args.action == "remove":
        app.connections.remove(args.id)
    app.save()
    return 0


def cmd_ignore(app: ClipdeckApp, args) -> int:
    apps = app.settings.ignored_apps()
    if args.action == "list":
        for name in apps:
            print(name)
        return 0
    if args.action == "add":
        apps.append(args.name)
    else:
        apps = [a for a in apps if a.lower() != args.name.lower()]
    app.settings.set_ignored_apps(apps)
    app.reload_ignored_apps()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipdeck",
        description="clipdeck - clipboard history, notes, snippets and prompts",
    )
    parser.add_argument("--version", action="version", version=f"clipdeck {__version__}")
    parser.add_argument("--db", default=None, help=f"database file (default: {DB_PATH})")
    parser.add_argument("-v", "--verbose", action="store_true", help="log informational messages")
    sub = parser.add_subparsers(dest="command", required=True)

    categories = [c.value for c in Category]

    p = sub.add_parser("new", help="create an item")
    p.add_argument("--category", choices=categories, default=Category.NOTES.value)
    p.add_argument("--structured", action="store_true", help="key-value fields instead of text")
    p.add_argument("--title")
    p.add_argument("--content", help="text, or - to read stdin")
    p.add_argument("--field", action="append", default=[], help="LABEL=VALUE or LABEL[type]=VALUE")
    p.set_defaults(handler=cmd_new)

    p = sub.add_parser("show", help="show one item")
    p.add_argument("id", type=int)
    p.add_argument("--reveal", action="store_true", help="show password and API key fields")
    p.set_defaults(handler=cmd_show)

    p = sub.add_parser("edit", help="change an item's title, content, fields or category")
    p.add_argument("id", type=int)
    p.add_argument("--title")
    p.add_argument("--content", help="text, or - to read stdin")
    p.add_argument("--field", action="append", default=[], help="replaces all fields")
    p.add_argument("--category", choices=categories)
    p.set_defaults(handler=cmd_edit)

    p = sub.add_parser("list", help="list items in a facet")
    p.add_argument("--facet", default="all", help="all, starred, untagged, recycle, <category>, tag:<name>")
    p.add_argument("--search", default="")
    p.add_argument("--limit", type=int, default=LIST_DISPLAY_COUNT)
    p.add_argument("--counts", action="store_true", help="show the number of items per facet")
    p.set_defaults(handler=cmd_list)

    p = sub.add_parser("tags", help="list tags in use")
    p.set_defaults(handler=cmd_tags)

    for name, handler, help_text in (
        ("delete", cmd_delete, "move an item to the recycle bin"),
        ("restore", cmd_restore, "restore an item from the recycle bin"),
        ("purge", cmd_purge, "permanently delete an item from the recycle bin"),
        ("pin", cmd_flag(Flag.PINNED, True), "pin an item"),
        ("unpin", cmd_flag(Flag.PINNED, False), "unpin an item"),
        ("star", cmd_flag(Flag.STARRED, True), "star an item"),
        ("unstar", cmd_flag(Flag.STARRED, False), "unstar an item"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("id", type=int)
        p.set_defaults(handler=handler)

    p = sub.add_parser("empty-bin", help="permanently delete everything in the recycle bin")
    p.set_defaults(handler=cmd_empty_bin)

    p = sub.add_parser("tag", help="add tags to an item")
    p.add_argument("id", type=int)
    p.add_argument("tags", nargs="+")
    p.set_defaults(handler=cmd_tag, remove=False)

    p = sub.add_parser("untag", help="remove tags from an item")
    p.add_argument("id", type=int)
    p.add_argument("tags", nargs="+")
    p.set_defaults(handler=cmd_tag, remove=True)

    p = sub.add_parser("capture", help="record copied text as a clipboard item")
    p.add_argument("text", nargs="?", help="text (default: stdin)")
    p.add_argument("--app", help="application the text was copied from")
    p.set_defaults(handler=cmd_capture)

    p = sub.add_parser("fire", help="fire a trigger and print the resulting effects")
    p.add_argument("trigger", choices=[t.value for t in TriggerKind])
    p.add_argument("--item", type=int)
    p.add_argument("--app")
    p.set_defaults(handler=cmd_fire)

    p = sub.add_parser("ask", help="resolve assistant input or a /command")
    p.add_argument("text")
    p.add_argument("--item", type=int, help="selected item passed as context")
    p.add_argument("--suggest", action="store_true", help="only list matching /commands")
    p.set_defaults(handler=cmd_ask)

    p = sub.add_parser("workflows", help="manage automation workflows")
    wsub = p.add_subparsers(dest="action", required=True)
    wsub.add_parser("list")
    wp = wsub.add_parser("add")
    wp.add_argument("name")
    wp.add_argument("--trigger", action="append", default=[], choices=[t.value for t in TriggerKind])
    wp.add_argument("--activity", action="append", default=[], choices=[a.value for a in ActivityKind])
    wp.add_argument("--tag", action="append", default=[], help="tag for add_tags")
    wp.add_argument("--script", help="script for run_script")
    wp.add_argument("--message", help="message for send_notification")
    wp.add_argument("--connection", help="connection id for sync_to_cloud")
    wp.add_argument("--app", action="append", default=[], help="limit to this application")
    wp.add_argument("--pattern", help="regex for on_text_match")
    wp.add_argument("--disabled", action="store_true")
    for action in ("enable", "disable", "remove"):
        wsub.add_parser(action).add_argument("id")
    p.set_defaults(handler=cmd_workflows)

    p = sub.add_parser("hotkeys", help="show or change keyboard shortcuts")
    hsub = p.add_subparsers(dest="action", required=True)
    hsub.add_parser("list")
    hp = hsub.add_parser("bind")
    hp.add_argument("target", metavar="action")
    hp.add_argument("keys", help='combination such as "ctrl+shift+v"')
    for action in ("clear", "enable", "disable"):
        hsub.add_parser(action).add_argument("target", metavar="action")
    p.set_defaults(handler=cmd_hotkeys)

    p = sub.add_parser("connections", help="record external connection state")
    csub = p.add_subparsers(dest="action", required=True)
    csub.add_parser("list")
    cp = csub.add_parser("add")
    cp.add_argument("name")
    cp.add_argument("--type", choices=[t.value for t in ConnectionType], default=ConnectionType.GOOGLE_DRIVE.value)
    for action in ("connect", "error", "disconnect", "remove"):
        csub.add_parser(action).add_argument("id")
    cp = csub.add_parser("connected")
    cp.add_argument("id")
    cp.add_argument("account")
    p.set_defaults(handler=cmd_connections)

    p = sub.add_parser("ignore", help="applications whose copies are not captured")
    isub = p.add_subparsers(dest="action", required=True)
    isub.add_parser("list")
    for action in ("add", "remove"):
        isub.add_parser(action).add_argument("name")
    p.set_defaults(handler=cmd_ignore)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        with ClipdeckApp(args.db) as app:
            return args.handler(app, args)
    except ClipdeckError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
