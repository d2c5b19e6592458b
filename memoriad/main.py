#!/usr/bin/env python3
"""
Memoria Daemon Main Entry Point
Initializes all services with dependency injection and starts the server
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from memoriad.errors import MemoriaError
from memoriad.services.artifact_service import ArtifactService
from memoriad.services.clipboard_service import ClipboardService
from memoriad.services.clipboard_tool import ClipboardTool, WlClipboardTool
from memoriad.services.database_service import DatabaseService
from memoriad.services.ipc_service import IPCService
from memoriad.services.retention_service import RetentionService
from memoriad.services.thumbnail_service import ThumbnailService
from memoriad.settings import SettingsManager

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False):
    """Configure root logging once; MEMORIA_LOG sets the level unless verbose"""
    if verbose:
        level = logging.DEBUG
    else:
        name = os.environ.get("MEMORIA_LOG", "INFO").upper()
        level = getattr(logging, name, None)
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


class MemoriaServer:
    """Main daemon application with dependency injection"""

    def __init__(self, settings_manager: SettingsManager,
                 clipboard_tool: Optional[ClipboardTool] = None,
                 socket_path: Optional[str] = None):
        """
        Initialize daemon with all services

        Args:
            settings_manager: Loaded configuration
            clipboard_tool: Clipboard capability, defaults to wl-clipboard
            socket_path: IPC socket location override
        """
        logger.info("Initializing services...")
        self.settings = settings_manager

        data_dir = self.settings.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Data directory: {data_dir}")

        # Initialize services in dependency order
        self.artifact_service = ArtifactService(data_dir)
        self.database_service = DatabaseService(
            str(data_dir / "memoria.db"),
            thumbs_dir=self.artifact_service.thumbs_dir,
            enforce_unique_hash=self.settings.dedupe,
        )
        self.thumbnail_service = ThumbnailService()
        self.clipboard_tool = clipboard_tool or WlClipboardTool(timeout=self.settings.tool_timeout)
        self.clipboard_service = ClipboardService(
            self.database_service,
            self.artifact_service,
            self.thumbnail_service,
            self.clipboard_tool,
            dedupe=self.settings.dedupe,
            poll_interval=self.settings.poll_interval,
        )
        self.retention_service = RetentionService(
            self.database_service,
            self.artifact_service,
            days=self.settings.retention_days,
            delete_unstarred_only=self.settings.delete_unstarred_only,
        )
        self.ipc_service = IPCService(
            self.database_service,
            self.artifact_service,
            self.clipboard_tool,
            self.settings.snapshot(),
            socket_path=socket_path,
        )
        self.stop_event: Optional[asyncio.Event] = None

        logger.info("All services initialized successfully")

    def request_stop(self, signum: int):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down...")
        if self.stop_event is not None:
            self.stop_event.set()

    async def run(self):
        """Run the watcher, the sweeper and the IPC server until stopped"""
        loop = asyncio.get_running_loop()
        self.stop_event = asyncio.Event()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self.request_stop, signum)

        tasks = []
        try:
            await self.ipc_service.start()
            tasks.append(asyncio.create_task(self.clipboard_service.run(), name="clipboard-watcher"))
            tasks.append(asyncio.create_task(self.retention_service.run(), name="retention-sweeper"))
            await self.stop_event.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.ipc_service.stop()
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(signum)
            self.database_service.close()
            logger.info("Server shutdown complete")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="memoriad", description="Clipboard history daemon")
    parser.add_argument("--config", type=Path, help="Path to config.yml")
    parser.add_argument("--socket", help="IPC socket path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    try:
        settings_manager = SettingsManager(args.config)
        server = MemoriaServer(settings_manager, socket_path=args.socket)
    except MemoriaError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    try:
        asyncio.run(server.run())
    except OSError as e:
        logger.error(f"Failed to bind IPC socket: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
