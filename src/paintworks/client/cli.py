"""Command-line client for a Paintworks server.

Examples::

    paintworks-client generate 3 --quantity 5 --watch
    paintworks-client status 3
    paintworks-client retry 42
    paintworks-client regenerate 43
    paintworks-client watch 3
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from paintworks.client.api_client import PaintworksClient, PaintworksClientError
from paintworks.client.placeholder_store import PlaceholderStore
from paintworks.client.poller import PollingSession
from paintworks.client.reconciler import ClientReconciler, Entry, Placeholder
from paintworks.core.config import config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paintworks-client",
        description="Generate and follow painting batches on a Paintworks server.",
    )
    parser.add_argument("--url", default=config.api_base_url, help="Server base URL.")
    parser.add_argument(
        "--token",
        default=config.api_token,
        help="Bearer token (defaults to PAINTWORKS_API_TOKEN).",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=config.poll_interval_seconds,
        help="Seconds between status polls.",
    )
    parser.add_argument(
        "--state-file",
        type=Path,
        default=config.client_state_path,
        help="Where in-flight placeholders are kept between runs.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging output.")

    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Start a batch for a title.")
    generate.add_argument("title_id", type=int)
    generate.add_argument("-n", "--quantity", type=int, help="Batch size (server default if omitted).")
    generate.add_argument("--watch", action="store_true", help="Follow the batch until it settles.")

    status = commands.add_parser("status", help="Print the current status of a title.")
    status.add_argument("title_id", type=int)
    status.add_argument("--json", action="store_true", help="Print the raw JSON snapshot.")

    retry = commands.add_parser("retry", help="Retry a failed painting.")
    retry.add_argument("painting_id", type=int)

    regenerate = commands.add_parser(
        "regenerate", help="Regenerate the prompt of a painting rejected for safety reasons."
    )
    regenerate.add_argument("painting_id", type=int)

    watch = commands.add_parser("watch", help="Poll a title until every painting is finished.")
    watch.add_argument("title_id", type=int)

    return parser


def format_progress(title_id: int, view: Sequence[Entry]) -> str:
    """One-line summary such as ``title 3: 5 item(s) | completed 2, pending 3``."""
    counts: dict[str, int] = {}
    for entry in view:
        counts[entry.status] = counts.get(entry.status, 0) + 1
    breakdown = ", ".join(f"{name} {count}" for name, count in sorted(counts.items()))
    waiting = sum(1 for entry in view if isinstance(entry, Placeholder))
    suffix = f" ({waiting} not yet reported)" if waiting else ""
    return f"title {title_id}: {len(view)} item(s) | {breakdown or 'empty'}{suffix}"


def _make_reconciler(title_id: int, state_file: Path) -> ClientReconciler:
    return ClientReconciler(
        title_id,
        PlaceholderStore(state_file),
        ttl=config.placeholder_ttl_seconds,
    )


def _watch(session: PollingSession) -> int:
    session.start()
    try:
        while not session.join(timeout=0.5):
            pass
    except KeyboardInterrupt:
        session.cancel()
        session.join()
        print("Stopped watching; placeholders are kept for the next run.")
        return 130
    return 0


def _print_line(title_id: int):
    def on_update(view: list[Entry]) -> None:
        print(format_progress(title_id, view), flush=True)

    return on_update


def cmd_generate(client: PaintworksClient, args: argparse.Namespace) -> int:
    if not args.watch:
        result = client.generate(args.title_id, args.quantity)
        print(result.get("message", ""))
        for idea in result.get("ideas", []):
            print(f"  [{idea['id']}] {idea['summary']}")
        return 0

    quantity = args.quantity or client.get_config().get("default_quantity", config.default_quantity)
    reconciler = _make_reconciler(args.title_id, args.state_file)
    reconciler.apply(client.get_status(args.title_id).get("paintings", []))
    batch_id = reconciler.submit(quantity)

    session = PollingSession(
        args.title_id,
        client,
        reconciler,
        interval=args.interval,
        on_update=_print_line(args.title_id),
    ).start()
    try:
        result = client.generate(args.title_id, quantity)
    except PaintworksClientError as exc:
        created = exc.detail.get("created", []) if isinstance(exc.detail, dict) else []
        reconciler.abort(batch_id, len(created))
        print(f"Batch failed: {exc}", file=sys.stderr)
        if not created:
            session.cancel()
            session.join()
            return 1
    else:
        reconciler.acknowledge(batch_id)
        print(result.get("message", ""), flush=True)
    return _watch(session)


def cmd_status(client: PaintworksClient, args: argparse.Namespace) -> int:
    snapshot = client.get_status(args.title_id)
    if args.json:
        print(json.dumps(snapshot, indent=2))
        return 0
    for painting in snapshot.get("paintings", []):
        line = f"[{painting['id']}] {painting['status']:<17} {painting.get('summary', '')}"
        if painting.get("image_url"):
            line += f"\n      {args.url.rstrip('/')}{painting['image_url']}"
        if painting.get("error_message"):
            line += f"\n      error: {painting['error_message']}"
        print(line)
    return 0


def cmd_retry(client: PaintworksClient, args: argparse.Namespace) -> int:
    result = client.retry(args.painting_id)
    print(f"{result['message']} (painting {result['painting_id']} is {result['status']})")
    return 0


def cmd_regenerate(client: PaintworksClient, args: argparse.Namespace) -> int:
    result = client.regenerate_prompt(args.painting_id)
    print(
        f"{result['message']} (painting {result['painting_id']} now uses idea {result['idea_id']})"
    )
    return 0


def cmd_watch(client: PaintworksClient, args: argparse.Namespace) -> int:
    session = PollingSession(
        args.title_id,
        client,
        _make_reconciler(args.title_id, args.state_file),
        interval=args.interval,
        on_update=_print_line(args.title_id),
    )
    return _watch(session)


COMMANDS = {
    "generate": cmd_generate,
    "status": cmd_status,
    "retry": cmd_retry,
    "regenerate": cmd_regenerate,
    "watch": cmd_watch,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``paintworks-client`` console script."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    client = PaintworksClient(args.url, token=args.token)
    try:
        return COMMANDS[args.command](client, args)
    except PaintworksClientError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
