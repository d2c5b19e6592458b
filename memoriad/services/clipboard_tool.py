#!/usr/bin/env python3
"""
Clipboard Tool - Reads and writes the system clipboard through wl-clipboard
"""
import asyncio
import logging
import os
import shutil
from typing import List, Optional, Sequence

from memoriad.errors import ExternalToolError

logger = logging.getLogger(__name__)

TEXT_MIME = "text/plain"
IMAGE_MIMES = ("image/png", "image/jpeg", "image/webp", "image/bmp")


def image_candidates(advertised: Sequence[str]) -> List[str]:
    """Advertised image types, known formats first in IMAGE_MIMES order"""
    ordered = [mime for mime in IMAGE_MIMES if mime in advertised]
    ordered += [mime for mime in advertised if mime.startswith("image/") and mime not in ordered]
    return ordered


def choose_mime(advertised: Sequence[str]) -> Optional[str]:
    """
    Pick the MIME type to read from the types a clipboard offers

    Image types win, then text/plain, then whatever is listed first.
    """
    if not advertised:
        return None
    images = image_candidates(advertised)
    if images:
        return images[0]
    for mime in advertised:
        if mime == TEXT_MIME or mime.startswith(TEXT_MIME + ";"):
            return mime
    return advertised[0]


class ClipboardTool:
    """
    Clipboard capability used by the watcher and the copy command

    Subclasses talk to a real clipboard; tests substitute a fake.
    """

    async def check_available(self):
        """Raise ExternalToolError if the clipboard cannot be used at all"""

    async def list_types(self) -> List[str]:
        raise NotImplementedError

    async def read(self, mime: str) -> bytes:
        """Clipboard content for mime, or b"" when none is offered"""
        raise NotImplementedError

    async def write(self, mime: str, data: bytes) -> bool:
        """Put data on the clipboard. Returns True on success."""
        raise NotImplementedError


class WlClipboardTool(ClipboardTool):
    """ClipboardTool backed by the wl-paste and wl-copy commands"""

    def __init__(self, timeout: float = 2.0):
        """
        Args:
            timeout: Seconds to wait for a wl-paste/wl-copy process
        """
        self.timeout = timeout

    async def check_available(self):
        if shutil.which("wl-paste") is None:
            raise ExternalToolError("wl-paste not found in PATH - install wl-clipboard package")
        if shutil.which("wl-copy") is None:
            raise ExternalToolError("wl-copy not found in PATH - install wl-clipboard package")
        if not os.environ.get("WAYLAND_DISPLAY"):
            raise ExternalToolError("WAYLAND_DISPLAY not set - not running under Wayland")

    async def _run(self, args: List[str], stdin_data: Optional[bytes] = None, capture: bool = True):
        output = asyncio.subprocess.PIPE if capture else asyncio.subprocess.DEVNULL
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
                stdout=output,
                stderr=output,
            )
        except OSError as e:
            raise ExternalToolError(f"Failed to run {args[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_data), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExternalToolError(f"{args[0]} timed out after {self.timeout}s")

        return process.returncode, stdout, stderr

    async def list_types(self) -> List[str]:
        returncode, stdout, _ = await self._run(["wl-paste", "--list-types"])
        if returncode != 0:
            return []
        return [line.strip() for line in stdout.decode("utf-8", errors="replace").splitlines() if line.strip()]

    async def read(self, mime: str) -> bytes:
        returncode, stdout, _ = await self._run(["wl-paste", "--no-newline", "--type", mime])
        if returncode != 0:
            return b""
        return stdout

    async def write(self, mime: str, data: bytes) -> bool:
        # wl-copy forks a child that keeps serving the selection and would hold
        # captured pipes open, so its output is discarded
        returncode, _, _ = await self._run(["wl-copy", "--type", mime], stdin_data=data, capture=False)
        if returncode != 0:
            logger.warning(f"wl-copy exited with status {returncode}")
            return False
        return True
