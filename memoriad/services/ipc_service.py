#!/usr/bin/env python3
"""
IPC Service - Handles UNIX domain socket communication with UI clients

Each request is one JSON object per line, e.g. {"cmd": "list", "limit": 10};
fields may also be nested under "args". Each response is one line shaped
{"ok": bool, "data"?: ..., "error"?: str}.
"""
import asyncio
import json
import logging
import os
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from memoriad.errors import InvalidArgumentError, MemoriaError, NotFoundError, ExternalToolError
from memoriad.services.artifact_service import ArtifactService
from memoriad.services.clipboard_tool import ClipboardTool
from memoriad.services.database_service import DatabaseService

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
TEXT_COPY_MIME = "text/plain;charset=utf-8"
MAX_LINE_BYTES = 1024 * 1024


def default_socket_path() -> str:
    """$XDG_RUNTIME_DIR/memoria.sock, falling back to /run/user/<uid>"""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR") or f"/run/user/{os.geteuid()}"
    return os.path.join(runtime_dir, "memoria.sock")


def parse_request(line: str) -> Tuple[str, Dict[str, Any]]:
    """
    Parse one request line

    Returns:
        (lower-cased cmd, request fields with "args" merged over top-level)

    Raises:
        InvalidArgumentError: bad JSON, not an object, or missing cmd
    """
    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        raise InvalidArgumentError(f"invalid json: {e}") from e

    if not isinstance(message, dict):
        raise InvalidArgumentError("request must be a JSON object")

    cmd = message.get("cmd")
    if cmd is None:
        raise InvalidArgumentError("missing cmd")
    if not isinstance(cmd, str):
        raise InvalidArgumentError("cmd must be a string")

    fields = {key: value for key, value in message.items() if key not in ("cmd", "args")}
    args = message.get("args")
    if isinstance(args, dict):
        fields.update(args)
    return cmd.lower(), fields


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _limit(fields: Dict[str, Any]) -> int:
    limit = fields.get("limit")
    if limit is None:
        return DEFAULT_LIMIT
    if not _is_int(limit) or limit < 0:
        raise InvalidArgumentError("limit must be a non-negative integer")
    return limit


def _required_id(cmd: str, fields: Dict[str, Any]) -> int:
    item_id = fields.get("id")
    if item_id is None:
        raise InvalidArgumentError(f"{cmd} requires id")
    if not _is_int(item_id):
        raise InvalidArgumentError("id must be an integer")
    return item_id


def _id_list(cmd: str, fields: Dict[str, Any], allow_empty: bool) -> List[int]:
    ids = fields.get("ids")
    if ids is None:
        raise InvalidArgumentError(f"{cmd} requires ids")
    if not isinstance(ids, list):
        raise InvalidArgumentError("ids must be an array")
    if not ids and not allow_empty:
        raise InvalidArgumentError("ids array cannot be empty")
    if not all(_is_int(i) for i in ids):
        raise InvalidArgumentError("ids must contain only integers")
    return ids


class IPCConnection:
    """Represents a single IPC client connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.closed = False
        self.at_eof = False

    async def send_json(self, data: dict):
        """Send one JSON line to the client."""
        if self.closed or self.writer.is_closing():
            return

        try:
            self.writer.write(json.dumps(data).encode('utf-8') + b'\n')
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            logger.error(f"Error sending message: {e}")
            self.closed = True

    async def receive_line(self) -> Optional[str]:
        """
        Receive one line from the client

        Returns None at end of stream. A line longer than the reader limit
        is read through its newline and dropped, then InvalidArgumentError
        is raised; the connection stays usable.
        """
        if self.closed or self.at_eof:
            self.closed = True
            return None

        try:
            line = await self.reader.readuntil(b'\n')
        except asyncio.IncompleteReadError as e:
            line = e.partial
        except asyncio.LimitOverrunError as e:
            if not await self._discard_line(e.consumed):
                self.at_eof = True
            raise InvalidArgumentError("request too large") from e
        except (ConnectionError, OSError) as e:
            logger.error(f"Error receiving message: {e}")
            self.closed = True
            return None

        if not line:
            self.closed = True
            return None
        return line.decode('utf-8', errors='replace')

    async def _discard_line(self, consumed: int) -> bool:
        """
        Drop buffered input up to and including the next newline

        Returns False if the stream ended first.
        """
        while True:
            await self.reader.readexactly(consumed)
            try:
                await self.reader.readuntil(b'\n')
                return True
            except asyncio.IncompleteReadError:
                return False
            except asyncio.LimitOverrunError as e:
                consumed = e.consumed

    async def close(self):
        """Close the connection."""
        if not self.closed:
            self.closed = True
        if not self.writer.is_closing():
            self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class IPCService:
    """Service for UNIX domain socket communication with UI clients"""

    def __init__(self, database_service: DatabaseService, artifact_service: ArtifactService,
                 clipboard_tool: ClipboardTool, settings_snapshot: Dict[str, Any],
                 socket_path: Optional[str] = None, line_limit: int = MAX_LINE_BYTES):
        """
        Initialize IPC service

        Args:
            database_service: Database service
            artifact_service: Removes files of deleted image items
            clipboard_tool: Clipboard write capability used by copy
            settings_snapshot: Data returned by get_settings
            socket_path: Socket location, defaults to default_socket_path()
            line_limit: Longest accepted request line in bytes
        """
        logger.info("[IPCService.__init__] Starting initialization...")
        self.db_service = database_service
        self.artifact_service = artifact_service
        self.clipboard_tool = clipboard_tool
        self.settings_snapshot = settings_snapshot
        self.socket_path = socket_path or default_socket_path()
        self.line_limit = line_limit
        self.clients: Set[IPCConnection] = set()
        self.server: Optional[asyncio.AbstractServer] = None
        self.handlers = {
            "list": self._handle_list,
            "search": self._handle_search,
            "gallery": self._handle_gallery,
            "star": self._handle_star,
            "copy": self._handle_copy,
            "delete": self._handle_delete,
            "delete_all_except_starred": self._handle_delete_all_except_starred,
            "delete_items": self._handle_delete_items,
            "get_settings": self._handle_get_settings,
        }
        logger.info("[IPCService.__init__] Initialization complete")

    async def start(self) -> asyncio.AbstractServer:
        """Bind the socket, replacing a stale one left by a crashed instance"""
        path = Path(self.socket_path)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove stale socket {path}: {e}")

        path.parent.mkdir(parents=True, exist_ok=True)
        self.server = await asyncio.start_unix_server(
            self.client_handler, path=str(path), limit=self.line_limit
        )
        logger.info(f"Listening on {path}")
        return self.server

    async def stop(self):
        """Stop accepting clients and remove the socket file"""
        if self.server is not None:
            self.server.close()
        # wait_closed() also waits for open connections
        for connection in list(self.clients):
            await connection.close()
        if self.server is not None:
            await self.server.wait_closed()
            self.server = None
        try:
            Path(self.socket_path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove socket on shutdown {self.socket_path}: {e}")

    async def client_handler(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle IPC client connections"""
        logger.info("IPC client connected")

        connection = IPCConnection(reader, writer)
        self.clients.add(connection)

        try:
            while not connection.closed:
                try:
                    line = await connection.receive_line()
                except InvalidArgumentError as e:
                    await connection.send_json({"ok": False, "error": str(e)})
                    continue
                if line is None:
                    break
                if not line.strip():
                    continue

                response = await self.handle_line(line)
                await connection.send_json(response)
        finally:
            self.clients.discard(connection)
            await connection.close()
            logger.info("IPC client disconnected")

    async def handle_line(self, line: str) -> Dict[str, Any]:
        """Turn one request line into a response; never raises"""
        try:
            cmd, fields = parse_request(line)
            handler = self.handlers.get(cmd)
            if handler is None:
                raise InvalidArgumentError(f"unknown cmd: {cmd}")
            data = await handler(cmd, fields)
            return {"ok": True, "data": data}
        except MemoriaError as e:
            logger.warning(f"IPC request failed: {e}")
            return {"ok": False, "error": str(e)}
        except Exception as e:
            logger.error(f"Error handling IPC message: {e}")
            logger.debug(traceback.format_exc())
            return {"ok": False, "error": str(e)}

    def _remove_artifacts(self, hashes: List[str]):
        """Post-commit file cleanup; failures are logged by ArtifactService"""
        self.db_service.release_artifacts(hashes, self.artifact_service.remove_for_hash)

    async def _handle_list(self, cmd: str, fields: Dict[str, Any]):
        starred_only = fields.get("starred_only", False)
        if not isinstance(starred_only, bool):
            raise InvalidArgumentError("starred_only must be a boolean")
        return await asyncio.to_thread(self.db_service.list_items, _limit(fields), starred_only)

    async def _handle_search(self, cmd: str, fields: Dict[str, Any]):
        query = fields.get("query")
        if query is None:
            raise InvalidArgumentError("search requires query")
        if not isinstance(query, str):
            raise InvalidArgumentError("query must be a string")
        results = await asyncio.to_thread(self.db_service.search, query, _limit(fields))
        logger.info(f"Search for '{query}' returned {len(results)} results")
        return results

    async def _handle_gallery(self, cmd: str, fields: Dict[str, Any]):
        return await asyncio.to_thread(self.db_service.gallery, _limit(fields))

    async def _handle_star(self, cmd: str, fields: Dict[str, Any]):
        item_id = _required_id(cmd, fields)
        value = fields.get("value")
        if value is None:
            raise InvalidArgumentError("star requires value")
        if not isinstance(value, bool):
            raise InvalidArgumentError("value must be a boolean")
        updated = await asyncio.to_thread(self.db_service.set_starred, item_id, value)
        logger.info(f"Set starred={value} on item {item_id}: {updated} updated")
        return {"updated": updated}

    async def _handle_copy(self, cmd: str, fields: Dict[str, Any]):
        item_id = _required_id(cmd, fields)

        image = await asyncio.to_thread(self.db_service.get_image, item_id)
        if image is not None and image["bytes"]:
            mime, payload = image["mime"] or "application/octet-stream", image["bytes"]
        else:
            item = await asyncio.to_thread(self.db_service.get_item, item_id)
            if item is None:
                raise NotFoundError(f"item {item_id} not found")
            if not item["body"]:
                raise NotFoundError(f"item {item_id} has no content to copy")
            mime, payload = TEXT_COPY_MIME, item["body"].encode("utf-8")

        if not await self.clipboard_tool.write(mime, payload):
            raise ExternalToolError("clipboard write failed")

        logger.info(f"Copied item {item_id} to clipboard ({mime}, {len(payload)} bytes)")
        return {"copied": True}

    async def _handle_delete(self, cmd: str, fields: Dict[str, Any]):
        ids = _id_list(cmd, fields, allow_empty=False)
        deleted, hashes = await asyncio.to_thread(self.db_service.delete_ids, ids)
        await asyncio.to_thread(self._remove_artifacts, hashes)
        return {"deleted": deleted}

    async def _handle_delete_all_except_starred(self, cmd: str, fields: Dict[str, Any]):
        deleted_items, deleted_images, hashes = await asyncio.to_thread(
            self.db_service.delete_all_except_starred
        )
        await asyncio.to_thread(self._remove_artifacts, hashes)
        return {"deleted_items": deleted_items, "deleted_images": deleted_images}

    async def _handle_delete_items(self, cmd: str, fields: Dict[str, Any]):
        ids = _id_list(cmd, fields, allow_empty=True)
        deleted, hashes = await asyncio.to_thread(self.db_service.delete_items, ids)
        await asyncio.to_thread(self._remove_artifacts, hashes)
        return {"deleted_count": deleted}

    async def _handle_get_settings(self, cmd: str, fields: Dict[str, Any]):
        return self.settings_snapshot
