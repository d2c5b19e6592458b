#!/usr/bin/env python3
"""
Clipboard Service - Watches the clipboard and stores new content
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from memoriad.errors import ExternalToolError
from memoriad.services.artifact_service import ArtifactService, mime_to_ext
from memoriad.services.clipboard_tool import TEXT_MIME, ClipboardTool, choose_mime, image_candidates
from memoriad.services.database_service import CAPTURE_TOUCHED, DatabaseService
from memoriad.services.thumbnail_service import ThumbnailService

logger = logging.getLogger(__name__)

TEXT_CHANNEL = "text"
IMAGE_CHANNEL = "image"


@dataclass
class ClipboardEntry:
    """One sampled clipboard payload"""
    mime: str
    data: bytes
    hash: str

    @property
    def is_image(self) -> bool:
        return self.mime.startswith("image/")


def advance(last_seen_hash: Optional[str], mime: Optional[str],
            sample: bytes) -> Tuple[Optional[str], Optional[ClipboardEntry]]:
    """
    Change detection for one channel

    An empty sample clears the channel, so the same content showing up
    again later counts as new. A sample matching last_seen_hash is the
    content already captured.

    Returns:
        (new last_seen_hash, entry to store or None)
    """
    if not sample or not mime:
        return None, None
    data_hash = DatabaseService.calculate_hash(sample)
    if data_hash == last_seen_hash:
        return last_seen_hash, None
    return data_hash, ClipboardEntry(mime=mime, data=sample, hash=data_hash)


def has_text(advertised: List[str]) -> bool:
    return any(mime.startswith("text/") or mime == "UTF8_STRING" for mime in advertised)


class ClipboardService:
    """Service for polling the clipboard and recording captures"""

    def __init__(self, database_service: DatabaseService, artifact_service: ArtifactService,
                 thumbnail_service: ThumbnailService, clipboard_tool: ClipboardTool,
                 dedupe: bool = True, poll_interval: float = 0.3,
                 clock: Callable[[], float] = time.time):
        """
        Initialize clipboard service

        Args:
            database_service: Store for captured items
            artifact_service: Writes original and thumbnail files
            thumbnail_service: Generates PNG thumbnails
            clipboard_tool: Clipboard read capability
            dedupe: Coalesce repeat captures onto one item
            poll_interval: Seconds between polls
            clock: Source of the current time in seconds
        """
        logger.info("[ClipboardService.__init__] Starting initialization...")
        self.db_service = database_service
        self.artifact_service = artifact_service
        self.thumbnail_service = thumbnail_service
        self.clipboard_tool = clipboard_tool
        self.dedupe = dedupe
        self.poll_interval = poll_interval
        self.clock = clock
        self.last_seen: Dict[str, Optional[str]] = {TEXT_CHANNEL: None, IMAGE_CHANNEL: None}
        self.enabled = True
        logger.info("[ClipboardService.__init__] Initialization complete")

    async def run(self):
        """Poll until cancelled. Returns early if the clipboard is unusable."""
        try:
            await self.clipboard_tool.check_available()
        except ExternalToolError as e:
            self.enabled = False
            logger.error(f"FATAL: {e}")
            logger.error("Clipboard monitoring disabled")
            return

        logger.info(f"Clipboard watcher started (polling every {int(self.poll_interval * 1000)}ms)")
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning(f"Clipboard poll failed: {e}")

    async def poll_once(self):
        """Sample both channels once and store anything new"""
        try:
            advertised = await self.clipboard_tool.list_types()
        except ExternalToolError as e:
            logger.debug(f"Failed to list clipboard types: {e}")
            return

        text_mimes = [TEXT_MIME] if has_text(advertised) else []
        image_mimes = image_candidates(advertised)
        if not text_mimes and not image_mimes and advertised:
            # nothing recognised, read the first offered type as text
            text_mimes = [choose_mime(advertised)]

        for channel, candidates in ((TEXT_CHANNEL, text_mimes), (IMAGE_CHANNEL, image_mimes)):
            try:
                mime, sample = await self._sample(candidates)
            except ExternalToolError as e:
                logger.debug(f"Failed to poll {channel} clipboard: {e}")
                continue

            self.last_seen[channel], entry = advance(self.last_seen[channel], mime, sample)
            if entry is None:
                continue

            logger.debug(f"{channel} clipboard changed: {entry.hash[:16]}... ({entry.mime})")
            try:
                await self.process_entry(entry)
            except Exception as e:
                logger.warning(f"Failed to process {channel} clipboard entry: {e}")

    async def _sample(self, candidates: List[str]) -> Tuple[Optional[str], bytes]:
        """First non-empty read among candidate MIME types"""
        for mime in candidates:
            sample = await self.clipboard_tool.read(mime)
            if sample:
                return mime, sample
        return None, b""

    async def process_entry(self, entry: ClipboardEntry) -> Tuple[str, int]:
        """
        Store one entry, generating the thumbnail first for new images

        Returns:
            (capture action, item id), see DatabaseService.record_capture
        """
        thumbnail = None
        if entry.is_image:
            known = self.dedupe and await asyncio.to_thread(self.db_service.find_by_hash, entry.hash)
            if not known:
                thumbnail = await asyncio.to_thread(self.thumbnail_service.generate_thumbnail, entry.data)
        return await asyncio.to_thread(self.store_entry, entry, thumbnail)

    def store_entry(self, entry: ClipboardEntry, thumbnail: Optional[bytes] = None) -> Tuple[str, int]:
        """
        Record an entry in the store; image files are written before commit

        If the insert fails after files were written, the files are removed
        again unless another item still uses the same hash.
        """
        now = int(self.clock())
        written = []

        def write_artifacts(item_id: int):
            png = thumbnail if thumbnail is not None else self.thumbnail_service.generate_thumbnail(entry.data)
            written.append(self.artifact_service.save_original(entry.hash, mime_to_ext(entry.mime), entry.data))
            written.append(self.artifact_service.save_thumbnail(entry.hash, png))

        try:
            action, item_id = self.db_service.record_capture(
                entry.mime, entry.data, entry.hash, self.dedupe, now,
                before_commit=write_artifacts if entry.is_image else None,
            )
        except Exception:
            if written:
                self.db_service.release_artifacts([entry.hash], self.artifact_service.remove_for_hash)
            raise

        if action == CAPTURE_TOUCHED:
            logger.info(f"↻ Duplicate detected, updated last_used for item {item_id} ({entry.hash[:16]}...)")
        elif entry.is_image:
            logger.info(f"✓ Copied image ({entry.mime}, {len(entry.data)} bytes) as item {item_id}")
        else:
            logger.info(f"✓ Copied text ({len(entry.data)} bytes) as item {item_id}")
        return action, item_id
