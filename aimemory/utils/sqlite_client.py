"""
SQLite client wrapper for memory, entity and vector persistence with full-text search.
"""

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from ..models.core import Entity, Memory
from .config import StorageConfig
from .json_utils import dumps_compact, loads_dict, loads_list
from .logging_config import get_logger
from .timestamp_utils import from_storage_str, to_storage_str

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content TEXT NOT NULL,
    category TEXT DEFAULT 'general',
    importance REAL DEFAULT 0.5,
    source TEXT,
    tags TEXT DEFAULT '[]',
    created_at TEXT DEFAULT (datetime('now')),
    last_accessed TEXT DEFAULT (datetime('now')),
    access_count INTEGER DEFAULT 0,
    decay_score REAL DEFAULT 1.0
);

CREATE TABLE IF NOT EXISTS entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    type TEXT DEFAULT 'unknown',
    attributes TEXT DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS memory_entities (
    memory_id INTEGER REFERENCES memories(id) ON DELETE CASCADE,
    entity_id INTEGER REFERENCES entities(id) ON DELETE CASCADE,
    PRIMARY KEY (memory_id, entity_id)
);

CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
    content, category, tags,
    content='memories',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
    INSERT INTO memories_fts(rowid, content, category, tags)
    VALUES (new.id, new.content, new.category, new.tags);
END;

CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, content, category, tags)
    VALUES ('delete', old.id, old.content, old.category, old.tags);
END;

CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE OF content, category, tags ON memories BEGIN
    INSERT INTO memories_fts(memories_fts, rowid, content, category, tags)
    VALUES ('delete', old.id, old.content, old.category, old.tags);
    INSERT INTO memories_fts(rowid, content, category, tags)
    VALUES (new.id, new.content, new.category, new.tags);
END;

CREATE TABLE IF NOT EXISTS memory_vectors (
    memory_id INTEGER PRIMARY KEY REFERENCES memories(id) ON DELETE CASCADE,
    vector TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memory_dense_vectors (
    memory_id INTEGER PRIMARY KEY REFERENCES memories(id) ON DELETE CASCADE,
    vector TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tfidf_index (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    data TEXT NOT NULL
);
"""

MEMORY_COLUMNS = 'm.id, m.content, m.category, m.importance, m.source, m.tags, m.created_at, m.last_accessed, m.access_count, m.decay_score'


class SQLiteClientError(Exception):
    """Custom exception for SQLite storage errors."""
    pass


def row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(id=row['id'],
                  content=row['content'],
                  category=row['category'] or 'general',
                  importance=float(row['importance']),
                  source=row['source'],
                  tags=loads_list(row['tags']),
                  created_at=from_storage_str(row['created_at']),
                  last_accessed=from_storage_str(row['last_accessed']),
                  access_count=int(row['access_count'] or 0),
                  decay_score=float(row['decay_score']))


def row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(id=row['id'],
                  name=row['name'],
                  type=row['type'] or 'unknown',
                  attributes=loads_dict(row['attributes']),
                  created_at=from_storage_str(row['created_at']),
                  updated_at=from_storage_str(row['updated_at']))


def _filter_clause(category: Optional[str], min_importance: float) -> Tuple[str, List[Any]]:
    clause = ' AND m.importance >= ?'
    params: List[Any] = [min_importance]
    if category:
        clause += ' AND m.category = ?'
        params.append(category)
    return clause, params


class SQLiteClient:
    """SQLite client holding one connection with explicit transaction control."""

    def __init__(self, config: StorageConfig):
        """
        Open (and if needed create) the database.

        Args:
            config: StorageConfig with the database path; ``:memory:`` is accepted
        """
        self.config = config
        self._tx_depth = 0

        try:
            if config.db_path != ':memory:':
                parent = os.path.dirname(os.path.abspath(config.db_path))
                os.makedirs(parent, exist_ok=True)
            # Autocommit mode; transactions are opened explicitly by transaction()
            self.conn = sqlite3.connect(config.db_path, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute('PRAGMA foreign_keys = ON')
            self.conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            logger.error(f'Failed to open database {config.db_path}: {e}')
            raise SQLiteClientError(f'Failed to open database: {e}')

        logger.info(f'Initialized SQLite client for database: {config.db_path}')

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction; nested blocks join the outermost one."""
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self.conn
            finally:
                self._tx_depth -= 1
            return

        self.conn.execute('BEGIN')
        self._tx_depth = 1
        try:
            yield self.conn
        except BaseException:
            self.conn.execute('ROLLBACK')
            raise
        else:
            self.conn.execute('COMMIT')
        finally:
            self._tx_depth = 0

    def close(self) -> None:
        self.conn.close()
        logger.debug(f'Closed database {self.config.db_path}')

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as e:
            logger.error(f'SQLite statement failed: {e}')
            raise SQLiteClientError(f'SQLite statement failed: {e}')

    # ── Memories ───────────────────────────────────────────────────────

    def insert_memory(self, content: str, category: str, importance: float, source: Optional[str], tags: List[str]) -> int:
        cursor = self._execute('INSERT INTO memories (content, category, importance, source, tags) VALUES (?, ?, ?, ?, ?)',
                               (content, category, importance, source, dumps_compact(list(tags))))
        return int(cursor.lastrowid)

    def get_memory(self, memory_id: int) -> Optional[Memory]:
        row = self._execute(f'SELECT {MEMORY_COLUMNS} FROM memories m WHERE m.id = ?', (memory_id, )).fetchone()
        return row_to_memory(row) if row else None

    def delete_memory(self, memory_id: int) -> bool:
        return self._execute('DELETE FROM memories WHERE id = ?', (memory_id, )).rowcount > 0

    def update_importance(self, memory_id: int, importance: float) -> bool:
        return self._execute('UPDATE memories SET importance = ? WHERE id = ?', (importance, memory_id)).rowcount > 0

    def touch_memories(self, memory_ids: Sequence[int], moment: Optional[datetime] = None) -> str:
        """Record a read of each memory.

        Returns:
            The timestamp written to ``last_accessed``

        Raises:
            SQLiteClientError: If the update fails
        """
        stamp = to_storage_str(moment)
        if memory_ids:
            try:
                self.conn.executemany('UPDATE memories SET last_accessed = ?, access_count = access_count + 1 WHERE id = ?',
                                      [(stamp, memory_id) for memory_id in memory_ids])
            except sqlite3.Error as e:
                logger.error(f'Access update failed: {e}')
                raise SQLiteClientError(f'Access update failed: {e}')
        return stamp

    def find_by_content_substring(self, token: str, limit: int) -> List[Tuple[int, str, float]]:
        """Memories whose content contains ``token``, as (id, content, importance)."""
        rows = self._execute('SELECT id, content, importance FROM memories WHERE content LIKE ? ORDER BY id LIMIT ?',
                             (f'%{token}%', limit)).fetchall()
        return [(row['id'], row['content'], float(row['importance'])) for row in rows]

    def all_memory_contents(self) -> List[Tuple[int, str]]:
        return [(row['id'], row['content']) for row in self._execute('SELECT id, content FROM memories ORDER BY id')]

    def iter_all_memories(self) -> List[Memory]:
        return [row_to_memory(row) for row in self._execute(f'SELECT {MEMORY_COLUMNS} FROM memories m ORDER BY m.id')]

    def fts_search(self, query: str, limit: int, category: Optional[str], min_importance: float) -> List[Memory]:
        """Full-text prefix match, best match weighted by importance and decay first.

        Raises:
            sqlite3.OperationalError: If FTS5 rejects the query syntax
        """
        clause, params = _filter_clause(category, min_importance)
        # bm25 rank is negative, lower is better
        rows = self.conn.execute(
            f"""
            SELECT {MEMORY_COLUMNS}
            FROM memories_fts fts
            JOIN memories m ON m.id = fts.rowid
            WHERE memories_fts MATCH (? || '*'){clause}
            ORDER BY (fts.rank * -1) * m.importance * m.decay_score DESC, m.id
            LIMIT ?
            """, (query, *params, limit)).fetchall()
        return [row_to_memory(row) for row in rows]

    def like_search(self, query: str, limit: int, category: Optional[str], min_importance: float) -> List[Memory]:
        clause, params = _filter_clause(category, min_importance)
        rows = self._execute(
            f"""
            SELECT {MEMORY_COLUMNS}
            FROM memories m
            WHERE m.content LIKE ?{clause}
            ORDER BY m.importance * m.decay_score DESC, m.id
            LIMIT ?
            """, (f'%{query}%', *params, limit)).fetchall()
        return [row_to_memory(row) for row in rows]

    def list_memories(self, limit: int, category: Optional[str], min_importance: float) -> List[Memory]:
        clause, params = _filter_clause(category, min_importance)
        rows = self._execute(
            f"""
            SELECT {MEMORY_COLUMNS}
            FROM memories m
            WHERE 1 = 1{clause}
            ORDER BY m.importance * m.decay_score DESC, m.id
            LIMIT ?
            """, (*params, limit)).fetchall()
        return [row_to_memory(row) for row in rows]

    def decay_candidates(self, moment: Optional[datetime] = None) -> List[Tuple[int, float, float]]:
        """Memories idle for more than a day, as (id, importance, decay_score)."""
        rows = self._execute('SELECT id, importance, decay_score FROM memories WHERE julianday(?) - julianday(last_accessed) > 1',
                             (to_storage_str(moment), )).fetchall()
        return [(row['id'], float(row['importance']), float(row['decay_score'])) for row in rows]

    def update_decay_scores(self, updates: Sequence[Tuple[float, int]]) -> None:
        """Apply (decay_score, id) pairs."""
        try:
            self.conn.executemany('UPDATE memories SET decay_score = ? WHERE id = ?', updates)
        except sqlite3.Error as e:
            logger.error(f'Decay update failed: {e}')
            raise SQLiteClientError(f'Decay update failed: {e}')

    # ── Vectors ────────────────────────────────────────────────────────

    def put_sparse_vector(self, memory_id: int, vector: str) -> None:
        self._execute('INSERT OR REPLACE INTO memory_vectors (memory_id, vector) VALUES (?, ?)', (memory_id, vector))

    def has_sparse_vector(self, memory_id: int) -> bool:
        return self._execute('SELECT 1 FROM memory_vectors WHERE memory_id = ?', (memory_id, )).fetchone() is not None

    def replace_all_sparse_vectors(self, rows: Sequence[Tuple[int, str]]) -> None:
        """Drop every sparse vector row and write the given (memory_id, vector) rows."""
        self._execute('DELETE FROM memory_vectors')
        try:
            self.conn.executemany('INSERT INTO memory_vectors (memory_id, vector) VALUES (?, ?)', rows)
        except sqlite3.Error as e:
            logger.error(f'Sparse vector rewrite failed: {e}')
            raise SQLiteClientError(f'Sparse vector rewrite failed: {e}')

    def get_sparse_vectors(self, category: Optional[str], min_importance: float) -> List[Tuple[Memory, str]]:
        return self._vectors_with_memories('memory_vectors', category, min_importance)

    def put_dense_vectors(self, rows: Sequence[Tuple[int, str]]) -> None:
        try:
            self.conn.executemany('INSERT OR REPLACE INTO memory_dense_vectors (memory_id, vector) VALUES (?, ?)', rows)
        except sqlite3.Error as e:
            logger.error(f'Dense vector write failed: {e}')
            raise SQLiteClientError(f'Dense vector write failed: {e}')

    def get_dense_vectors(self, category: Optional[str], min_importance: float) -> List[Tuple[Memory, str]]:
        return self._vectors_with_memories('memory_dense_vectors', category, min_importance)

    def count_sparse_vectors(self) -> int:
        return self._execute('SELECT COUNT(*) FROM memory_vectors').fetchone()[0]

    def count_dense_vectors(self) -> int:
        return self._execute('SELECT COUNT(*) FROM memory_dense_vectors').fetchone()[0]

    def _vectors_with_memories(self, table: str, category: Optional[str], min_importance: float) -> List[Tuple[Memory, str]]:
        clause, params = _filter_clause(category, min_importance)
        rows = self._execute(
            f"""
            SELECT {MEMORY_COLUMNS}, v.vector
            FROM {table} v
            JOIN memories m ON m.id = v.memory_id
            WHERE 1 = 1{clause}
            ORDER BY m.id
            """, params).fetchall()
        return [(row_to_memory(row), row['vector']) for row in rows]

    # ── TF-IDF state ───────────────────────────────────────────────────

    def load_index_state(self) -> Optional[str]:
        row = self._execute('SELECT data FROM tfidf_index WHERE id = 1').fetchone()
        return row['data'] if row else None

    def save_index_state(self, data: str) -> None:
        self._execute('INSERT INTO tfidf_index (id, data) VALUES (1, ?) ON CONFLICT(id) DO UPDATE SET data = excluded.data', (data, ))

    # ── Entities ───────────────────────────────────────────────────────

    def upsert_entity(self, name: str, entity_type: str, attributes: Dict[str, Any]) -> Entity:
        self._execute(
            """
            INSERT INTO entities (name, type, attributes) VALUES (?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                type = excluded.type,
                attributes = excluded.attributes,
                updated_at = datetime('now')
            """, (name, entity_type, dumps_compact(attributes)))
        return self.get_entity(name)

    def get_entity(self, name: str) -> Optional[Entity]:
        row = self._execute('SELECT * FROM entities WHERE name = ?', (name, )).fetchone()
        return row_to_entity(row) if row else None

    def all_entities(self) -> List[Entity]:
        return [row_to_entity(row) for row in self._execute('SELECT * FROM entities ORDER BY id')]

    def link_memory_entity(self, memory_id: int, entity_id: int) -> bool:
        """Create the link; returns False when it already existed."""
        cursor = self._execute('INSERT OR IGNORE INTO memory_entities (memory_id, entity_id) VALUES (?, ?)', (memory_id, entity_id))
        return cursor.rowcount > 0

    def get_memory_entities(self, memory_id: int) -> List[Entity]:
        rows = self._execute(
            """
            SELECT e.* FROM entities e
            JOIN memory_entities me ON me.entity_id = e.id
            WHERE me.memory_id = ?
            ORDER BY e.id
            """, (memory_id, )).fetchall()
        return [row_to_entity(row) for row in rows]

    # ── Stats ──────────────────────────────────────────────────────────

    def count_memories(self) -> int:
        return self._execute('SELECT COUNT(*) FROM memories').fetchone()[0]

    def count_by_category(self) -> Dict[str, int]:
        rows = self._execute('SELECT category, COUNT(*) AS count FROM memories GROUP BY category ORDER BY category')
        return {row['category']: row['count'] for row in rows}

    def count_entities(self) -> int:
        return self._execute('SELECT COUNT(*) FROM entities').fetchone()[0]

    def health_check(self) -> bool:
        """
        Perform a health check on the database.

        Returns:
            True if the database answers queries, False otherwise
        """
        try:
            return self.conn.execute('SELECT 1').fetchone()[0] == 1
        except sqlite3.Error as e:
            logger.error(f'SQLite health check failed: {e}')
            return False
