#!/usr/bin/env python3
"""
memoria-ctl - send one request to a running memoriad and print the reply

Examples:
    memoria-ctl list --limit 5
    memoria-ctl search "hello wor"
    memoria-ctl star 12 --off
    memoria-ctl delete 3 4 5
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from memoriad.services.ipc_service import MAX_LINE_BYTES, default_socket_path

logger = logging.getLogger(__name__)


def build_request(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate parsed arguments into a request object"""
    request: Dict[str, Any] = {"cmd": args.cmd}
    if args.cmd == "list":
        request["starred_only"] = args.starred_only
    if args.cmd in ("list", "search", "gallery") and args.limit is not None:
        request["limit"] = args.limit
    if args.cmd == "search":
        request["query"] = args.query
    if args.cmd in ("star", "copy"):
        request["id"] = args.id
    if args.cmd == "star":
        request["value"] = not args.off
    if args.cmd in ("delete", "delete_items"):
        request["ids"] = args.ids
    return request


async def send_request(socket_path: str, request: Dict[str, Any]) -> Dict[str, Any]:
    reader, writer = await asyncio.open_unix_connection(socket_path, limit=MAX_LINE_BYTES)
    try:
        writer.write(json.dumps(request).encode("utf-8") + b"\n")
        await writer.drain()
        line = await reader.readline()
    finally:
        writer.close()
        await writer.wait_closed()

    if not line:
        return {"ok": False, "error": "connection closed without a response"}
    return json.loads(line)


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memoria-ctl", description="Talk to the memoriad IPC socket")
    parser.add_argument("--socket", default=None, help="IPC socket path")
    commands = parser.add_subparsers(dest="cmd", required=True)

    list_cmd = commands.add_parser("list", help="List recent items")
    list_cmd.add_argument("--limit", type=int)
    list_cmd.add_argument("--starred-only", action="store_true")

    search_cmd = commands.add_parser("search", help="Full-text search")
    search_cmd.add_argument("query")
    search_cmd.add_argument("--limit", type=int)

    gallery_cmd = commands.add_parser("gallery", help="List image items")
    gallery_cmd.add_argument("--limit", type=int)

    star_cmd = commands.add_parser("star", help="Star or unstar an item")
    star_cmd.add_argument("id", type=int)
    star_cmd.add_argument("--off", action="store_true", help="Unstar instead")

    copy_cmd = commands.add_parser("copy", help="Put an item back on the clipboard")
    copy_cmd.add_argument("id", type=int)

    delete_cmd = commands.add_parser("delete", help="Delete non-starred items")
    delete_cmd.add_argument("ids", type=int, nargs="+")

    delete_items_cmd = commands.add_parser("delete_items", help="Delete items even if starred")
    delete_items_cmd.add_argument("ids", type=int, nargs="+")

    commands.add_parser("delete_all_except_starred", help="Delete every non-starred item")
    commands.add_parser("get_settings", help="Show UI settings")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s - %(message)s")
    args = make_parser().parse_args(argv)
    socket_path = args.socket or default_socket_path()

    try:
        response = asyncio.run(send_request(socket_path, build_request(args)))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Request to {socket_path} failed: {e}")
        return 2

    print(json.dumps(response, indent=2))
    return 0 if response.get("ok") else 1


if __name__ == "__main__":
    sys.exit(main())
