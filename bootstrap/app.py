import logging
import logging.handlers
import os
import platform
from pathlib import Path
from typing import Optional

import psutil
from dotenv import load_dotenv

from core.config import QueueSettings
from core.model import Database
from core.queue.database_queue import DatabaseQueue
from core.queue.job_registry import JobRegistry
from core.queue.queue_manager import QueueManager
from core.queue.queue_worker import QueueWorker

VERSION = "0.1.0"


class Application:
    """
    Composition root: builds the database, queue manager and handler registry
    from the environment and owns their lifecycle.
    """

    @staticmethod
    def print_banner():
        """Print the banner with system information."""
        system_info = platform.system()
        cpu_count = psutil.cpu_count(logical=True)
        memory = psutil.virtual_memory()
        memory_gb = round(memory.total / (1024**3), 1)

        banner = f"""
workqueue {VERSION} - durable background jobs

Running on {system_info} | CPU: {cpu_count} cores | RAM: {memory_gb} GB
"""
        print(banner)

    def __init__(
        self,
        env_file: str = ".env",
        handler_package: str = "app.jobs",
        database_url: Optional[str] = None,
        registry: Optional[JobRegistry] = None,
        banner: bool = True,
    ):
        """
        Initialize a new workqueue application.

        Args:
            env_file: The environment file to load configuration from
            handler_package: Package scanned for JobHandler classes
            database_url: Connection string overriding the DB_* environment variables
            registry: A JobRegistry to use. If None, discovers handlers from handler_package
            banner: Print the startup banner
        """
        if banner:
            self.print_banner()

        load_dotenv(env_file)

        self._setup_logging()

        self.settings = QueueSettings()
        self.database = Database(database_url or Database.url_from_env())
        self.driver = DatabaseQueue(self.database)
        self.queue = QueueManager(self.driver, settings=self.settings)

        self.handler_package = handler_package
        self.registry = registry
        if self.registry is None:
            self.registry = JobRegistry().discover(self.handler_package)
            self.logger.info(f"Job handlers loaded dynamically from {self.handler_package}")

        self.logger.info(f"Registered job types: {', '.join(self.registry.job_types) or 'none'}")

    def _setup_logging(self):
        """Configure logging based on environment variables with file rotation support."""
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        log_format = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        log_to_file = os.getenv("LOG_TO_FILE", "false").lower() == "true"
        log_file = os.getenv("LOG_FILE", "logs/workqueue.log")

        log_rotation_type = os.getenv("LOG_ROTATION_TYPE", "size").lower()  # 'size' or 'time'

        max_bytes = int(os.getenv("LOG_MAX_BYTES", "10485760"))  # 10 MB default
        backup_count = int(os.getenv("LOG_BACKUP_COUNT", "5"))

        rotation_when = os.getenv("LOG_ROTATION_WHEN", "midnight").lower()  # 'midnight', 'D', 'H', etc.
        rotation_interval = int(os.getenv("LOG_ROTATION_INTERVAL", "1"))

        handlers = [logging.StreamHandler()]

        if log_to_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                if log_rotation_type == "time":
                    file_handler = logging.handlers.TimedRotatingFileHandler(
                        filename=log_file,
                        when=rotation_when,
                        interval=rotation_interval,
                        backupCount=backup_count,
                        encoding='utf-8'
                    )
                else:
                    file_handler = logging.handlers.RotatingFileHandler(
                        filename=log_file,
                        maxBytes=max_bytes,
                        backupCount=backup_count,
                        encoding='utf-8'
                    )

                file_handler.setFormatter(logging.Formatter(log_format))
                handlers.append(file_handler)

            except OSError as e:
                print(f"Warning: Could not setup file logging: {e}")
                print("Falling back to console logging only")

        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format=log_format,
            handlers=handlers,
            force=True
        )

        self.logger = logging.getLogger("WorkQueue.Application")

        if log_to_file:
            self.logger.info(f"Logging configured - File: {log_file}, Rotation: {log_rotation_type}")
        else:
            self.logger.info("File logging disabled - Console only")

    def create_worker(self, **options) -> QueueWorker:
        """Build a worker bound to this application's queue and handlers."""
        return QueueWorker(self.queue, self.registry, **options)

    async def initialize(self):
        """Create database tables."""
        await self.database.create_tables()

    async def shutdown(self):
        """Close database connections."""
        await self.database.dispose()
