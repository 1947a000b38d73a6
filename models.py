#!/usr/bin/env python3
"""
Database models and operations for the Feed Reader.

This module contains all database-related classes and functions,
providing a clean separation between data access and business logic.
Callers go through ``DatabaseQueue.execute('<operation>', **params)``, which
serializes every operation onto a single SQLite connection.
"""

from os import path, access, R_OK
from sqlite3 import connect, Row, Error, IntegrityError
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Set, Any

from config import config, get_logger
from dates import format_timestamp, utc_now
from errors import FeedReaderError, ValidationError
from telemetry import trace_span

# Module-specific logger
logger = get_logger("models")

FEED_FIELDS = ('title', 'url', 'icon_url', 'color', 'fetch_content', 'folder_id')
DEFAULT_FOLDER_LABEL = "Default"


def initialize_database(conn) -> None:
    """Initialize the database with the defined schema from SQL file."""
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='feeds'")
        feeds_table_exists = cursor.fetchone() is not None

        if not feeds_table_exists:
            logger.info("Database is new or empty. Initializing schema.")
            cursor.executescript(_read_schema_file())
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.debug("Database already exists with proper schema")
            _run_migrations(conn)

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _run_migrations(conn) -> None:
    """Run any necessary database migrations."""
    cursor = conn.cursor()

    try:
        # Migration 1: full-text content columns on items
        cursor.execute("PRAGMA table_info(items)")
        columns = [column[1] for column in cursor.fetchall()]
        for column, ddl in (('full_content', 'TEXT'), ('ttr', 'INTEGER')):
            if column not in columns:
                logger.info(f"Adding {column} column to items table")
                cursor.execute(f"ALTER TABLE items ADD COLUMN {column} {ddl}")
                conn.commit()

        # Migration 2: filter keywords table
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='filter_keywords'")
        if cursor.fetchone() is None:
            logger.info("Creating filter_keywords table")
            cursor.execute("""
                CREATE TABLE filter_keywords (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    keyword TEXT NOT NULL UNIQUE,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    except Exception as e:
        logger.error(f"Error running migrations: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
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


def _feed_row(row) -> Dict[str, Any]:
    feed = dict(row)
    feed['fetch_content'] = bool(feed.get('fetch_content'))
    return feed


class DatabaseQueue:
    """A queue for database operations to ensure thread safety."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None

    async def start(self) -> None:
        """Open the connection, apply the schema and start the database worker."""
        if self.running:
            return

        if path.isfile(self.db_path):
            logger.debug(f"Using existing database at {self.db_path}")
        else:
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")

        self.conn = connect(self.db_path)
        self.conn.row_factory = Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        initialize_database(self.conn)

        self.running = True
        self.worker_task = create_task(self._worker())
        logger.debug("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
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

        # Release anyone still waiting on an operation
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.debug("Database worker stopped")

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
                    if operation_name.startswith('_') or not callable(method):
                        raise AttributeError(f"Unknown operation: {operation_name}")
                    self.results[operation_id] = {"result": method(**params)}
                except FeedReaderError as e:
                    self.results[operation_id] = {"error": e}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": e}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.debug("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
            "db.params.keys": ",".join(sorted(params.keys())) if params else "",
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation, re-raising its exception on failure."""
        if not self.running:
            raise RuntimeError("Database worker is not running")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, None)
            if result is None:
                raise RuntimeError(f"Database stopped before {operation_name} completed")
            if "error" in result:
                raise result["error"]
            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Folder Operations
    def create_folder(self, label: str, icon: str = 'folder', is_default: bool = False) -> int:
        """Create a folder and return its ID."""
        label = (label or '').strip()
        if not label:
            raise ValidationError("Folder label is required")
        try:
            cursor = self.conn.execute(
                "INSERT INTO folders (label, icon, is_default) VALUES (?, ?, ?)",
                (label, icon or 'folder', 1 if is_default else 0),
            )
            self.conn.commit()
            return cursor.lastrowid
        except IntegrityError:
            raise ValidationError(f"Folder '{label}' already exists")

    def list_folders(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute("SELECT * FROM folders ORDER BY label").fetchall()
        return [dict(row) for row in rows]

    def get_folder_by_label(self, label: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM folders WHERE label = ?", (label,)).fetchone()
        return dict(row) if row else None

    def update_folder(self, folder_id: int, label: str, icon: Optional[str] = None) -> bool:
        label = (label or '').strip()
        if not label:
            raise ValidationError("Folder label is required")
        try:
            cursor = self.conn.execute(
                "UPDATE folders SET label = ?, icon = COALESCE(?, icon), updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (label, icon, folder_id),
            )
            self.conn.commit()
            return cursor.rowcount > 0
        except IntegrityError:
            raise ValidationError(f"Folder '{label}' already exists")

    def delete_folder(self, folder_id: int) -> bool:
        """Delete a folder; its feeds fall back to no folder."""
        cursor = self.conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def ensure_default_folder(self) -> int:
        """Make sure a default folder exists and owns every folder-less feed."""
        row = self.conn.execute("SELECT id FROM folders WHERE is_default = 1 LIMIT 1").fetchone()
        if row:
            folder_id = row['id']
        else:
            existing = self.get_folder_by_label(DEFAULT_FOLDER_LABEL)
            if existing:
                folder_id = existing['id']
                self.conn.execute("UPDATE folders SET is_default = 1 WHERE id = ?", (folder_id,))
            else:
                folder_id = self.conn.execute(
                    "INSERT INTO folders (label, icon, is_default) VALUES (?, 'folder', 1)",
                    (DEFAULT_FOLDER_LABEL,),
                ).lastrowid
                logger.info("Created default folder")
        self.conn.execute("UPDATE feeds SET folder_id = ? WHERE folder_id IS NULL", (folder_id,))
        self.conn.commit()
        return folder_id

    # Feed Management Operations
    def create_feed(self, title: str, url: str, icon_url: Optional[str] = None,
                    color: Optional[str] = None, fetch_content: bool = False,
                    folder_id: Optional[int] = None) -> int:
        """Create a feed and return its ID."""
        try:
            cursor = self.conn.execute(
                "INSERT INTO feeds (title, url, icon_url, color, fetch_content, folder_id) VALUES (?, ?, ?, ?, ?, ?)",
                (title, url, icon_url, color or config.DEFAULT_FEED_COLOR, 1 if fetch_content else 0, folder_id),
            )
            self.conn.commit()
            return cursor.lastrowid
        except IntegrityError as e:
            if 'UNIQUE' in str(e):
                raise ValidationError(f"A feed with URL {url} already exists")
            raise

    def get_feed(self, feed_id: int) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return _feed_row(row) if row else None

    def get_feed_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM feeds WHERE url = ?", (url,)).fetchone()
        return _feed_row(row) if row else None

    def list_feeds(self) -> List[Dict[str, Any]]:
        """List all feeds ordered by title."""
        rows = self.conn.execute("SELECT * FROM feeds ORDER BY title COLLATE NOCASE").fetchall()
        return [_feed_row(row) for row in rows]

    def update_feed(self, feed_id: int, **fields) -> bool:
        """Update the given feed columns (title, url, icon_url, color, fetch_content, folder_id)."""
        unknown = set(fields) - set(FEED_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown feed fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False
        if 'fetch_content' in fields:
            fields['fetch_content'] = 1 if fields['fetch_content'] else 0
        assignments = ", ".join(f"{name} = ?" for name in fields)
        try:
            cursor = self.conn.execute(
                f"UPDATE feeds SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (*fields.values(), feed_id),
            )
            self.conn.commit()
            return cursor.rowcount > 0
        except IntegrityError as e:
            if 'UNIQUE' in str(e):
                raise ValidationError(f"A feed with URL {fields.get('url')} already exists")
            raise

    def delete_feed(self, feed_id: int) -> bool:
        """Delete a feed; its items go with it."""
        cursor = self.conn.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # Item Management Operations
    def upsert_item(self, feed_id: int, guid: str, title: str, link: Optional[str],
                    description: Optional[str], image_url: Optional[str], pub_date: str,
                    keep_existing_date: bool = False) -> bool:
        """Insert an item or update the mutable fields of the row keyed by (feed_id, guid).

        Only reports whether a row was inserted or actually changed; callers that
        need the row itself look it up with ``get_item_by_guid``.

        ``keep_existing_date`` preserves a stored pub_date, for entries whose date
        was defaulted to "now" because the feed did not supply one.
        """
        cursor = self.conn.execute(
            """
            INSERT INTO items (feed_id, guid, title, link, description, image_url, pub_date)
            VALUES (:feed_id, :guid, :title, :link, :description, :image_url, :pub_date)
            ON CONFLICT(feed_id, guid) DO UPDATE SET
                title = excluded.title,
                link = excluded.link,
                description = excluded.description,
                image_url = excluded.image_url,
                pub_date = CASE WHEN :keep THEN items.pub_date ELSE excluded.pub_date END
            WHERE items.title IS NOT excluded.title
               OR items.link IS NOT excluded.link
               OR items.description IS NOT excluded.description
               OR items.image_url IS NOT excluded.image_url
               OR (NOT :keep AND items.pub_date IS NOT excluded.pub_date)
            """,
            {
                'feed_id': feed_id,
                'guid': guid,
                'title': title,
                'link': link or '',
                'description': description or '',
                'image_url': image_url,
                'pub_date': pub_date,
                'keep': 1 if keep_existing_date else 0,
            },
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def get_all_titles(self) -> Set[str]:
        """Every stored item title, across all feeds."""
        rows = self.conn.execute("SELECT DISTINCT title FROM items WHERE title IS NOT NULL").fetchall()
        return {row[0] for row in rows}

    def get_item_by_guid(self, feed_id: int, guid: str) -> Optional[Dict[str, Any]]:
        """Look an item up by its natural key."""
        row = self.conn.execute(
            "SELECT id, title, link, full_content, ttr FROM items WHERE feed_id = ? AND guid = ?",
            (feed_id, guid),
        ).fetchone()
        return dict(row) if row else None

    def update_full_content(self, item_id: int, content: str, ttr: Optional[int] = None) -> bool:
        cursor = self.conn.execute(
            "UPDATE items SET full_content = ?, ttr = ? WHERE id = ?",
            (content, ttr, item_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def mark_read(self, item_id: int) -> bool:
        cursor = self.conn.execute(
            "UPDATE items SET read_at = ? WHERE id = ?",
            (format_timestamp(utc_now()), item_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def mark_unread(self, item_id: int) -> bool:
        cursor = self.conn.execute("UPDATE items SET read_at = NULL WHERE id = ?", (item_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def bulk_mark_read(self, item_ids: List[int]) -> int:
        """Mark several items read in one statement; returns the rows touched."""
        if not item_ids:
            return 0
        placeholders = ','.join('?' for _ in item_ids)
        cursor = self.conn.execute(
            f"UPDATE items SET read_at = ? WHERE id IN ({placeholders})",
            [format_timestamp(utc_now()), *item_ids],
        )
        self.conn.commit()
        return cursor.rowcount

    def delete_older_than(self, cutoff: str) -> int:
        """Delete items published before ``cutoff`` (canonical timestamp).

        Returns:
            Number of items deleted
        """
        cursor = None
        try:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM items WHERE pub_date < ?", (cutoff,))
            deleted = cursor.rowcount
            self.conn.commit()
            if deleted:
                logger.info(f"Database maintenance: deleted {deleted} items published before {cutoff}")
            return deleted
        except Error as e:
            logger.error(f"Error during database maintenance (deleting old items): {e}")
            self.conn.rollback()
            return 0
        finally:
            if cursor:
                cursor.close()

    def list_items(self, feed_id: Optional[int] = None, folder_id: Optional[int] = None,
                   search: Optional[str] = None, unread_only: bool = False,
                   limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """List items newest first, joined with their feed's display fields."""
        clauses = []
        params: List[Any] = []
        if feed_id is not None:
            clauses.append("items.feed_id = ?")
            params.append(feed_id)
        if folder_id is not None:
            clauses.append("feeds.folder_id = ?")
            params.append(folder_id)
        if search:
            pattern = f"%{search}%"
            clauses.append("(items.title LIKE ? OR items.description LIKE ? OR items.full_content LIKE ?)")
            params.extend([pattern, pattern, pattern])
        if unread_only:
            clauses.append("items.read_at IS NULL")

        query = """
            SELECT items.*, feeds.title AS feed_title, feeds.color AS feed_color, feeds.icon_url AS feed_icon
            FROM items
            JOIN feeds ON items.feed_id = feeds.id
        """
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY items.pub_date DESC"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))
        return [dict(row) for row in self.conn.execute(query, params).fetchall()]

    def count_items(self) -> int:
        """Return total number of rows in items table."""
        return int(self.conn.execute("SELECT COUNT(*) FROM items").fetchone()[0])

    def unread_counts(self) -> Dict[str, Any]:
        """Unread totals overall, per feed and per folder (feeds without a folder count under None)."""
        rows = self.conn.execute(
            "SELECT feed_id, COUNT(*) FROM items WHERE read_at IS NULL GROUP BY feed_id"
        ).fetchall()
        by_feed = {row[0]: row[1] for row in rows}
        rows = self.conn.execute(
            """SELECT feeds.folder_id, COUNT(*) FROM items
               JOIN feeds ON feeds.id = items.feed_id
               WHERE items.read_at IS NULL
               GROUP BY feeds.folder_id"""
        ).fetchall()
        by_folder = {row[0]: row[1] for row in rows}
        return {'total': sum(by_feed.values()), 'by_feed': by_feed, 'by_folder': by_folder}

    # Filter Keyword Operations
    def list_filter_keywords(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute("SELECT * FROM filter_keywords ORDER BY keyword").fetchall()
        return [dict(row) for row in rows]

    def get_filter_keywords(self) -> List[str]:
        return [row['keyword'] for row in self.list_filter_keywords()]

    def add_filter_keyword(self, keyword: str) -> int:
        """Store a lower-cased keyword; duplicates are rejected."""
        normalized = keyword.strip().lower() if isinstance(keyword, str) else ''
        if not normalized:
            raise ValidationError("Keyword is required")
        try:
            cursor = self.conn.execute("INSERT INTO filter_keywords (keyword) VALUES (?)", (normalized,))
            self.conn.commit()
            return cursor.lastrowid
        except IntegrityError:
            raise ValidationError(f"Keyword '{normalized}' already exists")

    def delete_filter_keyword(self, keyword_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM filter_keywords WHERE id = ?", (keyword_id,))
        self.conn.commit()
        return cursor.rowcount > 0
