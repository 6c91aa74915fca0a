#!/usr/bin/env python3
"""
Database models and operations for feedhose.

All SQLite access goes through a single DatabaseQueue worker: callers queue a
named operation, the worker runs it to completion (including its commit or
rollback) and hands the result back. No caller ever holds the connection.
"""

from os import path, access, R_OK
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Set, Any

from config import config, get_logger
from errors import PersistenceError, StoreUnavailable
from telemetry import trace_span

logger = get_logger("models")

ARTICLE_COLUMNS = ("title", "article_text", "publish_date", "top_image", "keywords", "url")


def initialize_database(conn) -> None:
    """Create the discovered/articles tables if they do not exist yet."""
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name IN ('discovered', 'articles')")
        existing = {row[0] for row in cursor.fetchall()}
        if existing == {"discovered", "articles"}:
            logger.info("Database already exists with proper schema")
            return

        logger.info(f"Initializing schema (existing tables: {sorted(existing) or 'none'})")
        cursor.executescript(_read_schema_file())
        conn.commit()
        logger.info("Database schema initialized successfully")
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file next to this module."""
    schema_path = config.SCHEMA_FILE_PATH

    if not path.isfile(schema_path):
        raise FileNotFoundError(f"Schema file not found at {schema_path}")
    if not access(schema_path, R_OK):
        raise PermissionError(f"No read permission for schema file at {schema_path}")

    file_size = path.getsize(schema_path)
    max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
    if file_size > max_size:
        raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

    with open(schema_path, 'r') as f:
        return f.read()


class DatabaseQueue:
    """A queue for database operations so the connection is only used by one worker."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None

    async def start(self) -> None:
        """Open the database, ensure the schema and start the worker.

        Raises:
            StoreUnavailable: the database cannot be opened or initialized.
        """
        if self.running:
            return

        if path.isfile(self.db_path):
            logger.info(f"Using existing database at {self.db_path}")
        else:
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except (Error, OSError, ValueError) as e:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
            raise StoreUnavailable(f"Cannot open database {self.db_path}: {e}",
                                   details={"path": self.db_path}) from e

        self.running = True
        self.worker_task = create_task(self._worker())
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker and close the connection."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release anyone still waiting so they fail instead of hanging
        for operation_id, event in self.events.items():
            self.results.setdefault(operation_id, {"error": RuntimeError("Database worker stopped")})
            event.set()
        self.events.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    method = getattr(self, operation_name, None)
                    if method is None or operation_name.startswith("_"):
                        self.results[operation_id] = {"error": AttributeError(f"Unknown operation: {operation_name}")}
                    else:
                        self.results[operation_id] = {"result": method(**params)}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": e}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.info("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {"db.operation": operation_name},
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation.

        Raises:
            PersistenceError: the operation failed or the worker is not running.
        """
        if not self.running:
            raise PersistenceError(f"Database worker is not running ({operation_name})")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, {"error": RuntimeError("No result recorded")})
            if "error" in result:
                error = result["error"]
                raise PersistenceError(f"{operation_name} failed: {error}",
                                       details={"operation": operation_name}) from error

            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Snapshot Operations
    def get_existing_urls(self) -> Set[str]:
        """Return every URL stored in either table."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT url FROM discovered UNION SELECT url FROM articles")
            return {row[0] for row in cursor.fetchall()}
        finally:
            cursor.close()

    # Batch Write Operations
    def insert_discovered(self, urls: List[str]) -> int:
        """Insert a batch of URLs in one transaction; returns rows actually inserted.

        URLs already present in either table are skipped without error.
        """
        if not urls:
            return 0
        cursor = self.conn.cursor()
        inserted = 0
        try:
            for url in urls:
                cursor.execute(
                    """
                    INSERT INTO discovered (url)
                    SELECT ? WHERE NOT EXISTS (SELECT 1 FROM articles WHERE url = ?)
                    ON CONFLICT(url) DO NOTHING
                    """,
                    (url, url),
                )
                if cursor.rowcount > 0:
                    inserted += 1
            self.conn.commit()
            return inserted
        except Error:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    def insert_articles(self, articles: List[Dict[str, Any]]) -> int:
        """Insert a batch of article rows in one transaction; returns rows actually inserted."""
        if not articles:
            return 0
        cursor = self.conn.cursor()
        inserted = 0
        try:
            for article in articles:
                values = tuple(article.get(column) for column in ARTICLE_COLUMNS)
                cursor.execute(
                    """
                    INSERT INTO articles (title, article_text, publish_date, top_image, keywords, url)
                    SELECT ?, ?, ?, ?, ?, ? WHERE NOT EXISTS (SELECT 1 FROM discovered WHERE url = ?)
                    ON CONFLICT(url) DO NOTHING
                    """,
                    values + (article.get("url"),),
                )
                if cursor.rowcount > 0:
                    inserted += 1
            self.conn.commit()
            return inserted
        except Error:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    # Utility Operations
    def count_discovered(self) -> int:
        """Return total number of rows in the discovered table."""
        return self._count("discovered")

    def count_articles(self) -> int:
        """Return total number of rows in the articles table."""
        return self._count("articles")

    def _count(self, table: str) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            result = cursor.fetchone()
            return int(result[0]) if result else 0
        finally:
            cursor.close()
