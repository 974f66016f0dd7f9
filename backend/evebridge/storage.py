# evebridge/storage.py
import logging
import os
import sqlite3
import threading

from .errors import StartupError, StorageError
from .schemas import NormalizedEvent

logger = logging.getLogger(__name__)

COLUMNS = (
    "tenant_id", "timestamp", "event_type",
    "src_ip", "src_port", "dest_ip", "dest_port", "protocol",
    "signature", "severity", "category", "action",
    "country", "city", "latitude", "longitude",
    "raw_payload", "created_at",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    src_ip TEXT NOT NULL,
    src_port INTEGER,
    dest_ip TEXT NOT NULL,
    dest_port INTEGER,
    protocol TEXT,
    signature TEXT,
    severity INTEGER,
    category TEXT,
    action TEXT,
    country TEXT,
    city TEXT,
    latitude REAL,
    longitude REAL,
    raw_payload TEXT,
    created_at TEXT NOT NULL
)
"""

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_events_src_ip ON events (src_ip)",
    "CREATE INDEX IF NOT EXISTS idx_events_dest_ip ON events (dest_ip)",
)


class EventStore:
    """Store eventi su SQLite (WAL). insert() è bloccante: dal loop va chiamato in un thread."""

    def __init__(self, path: str):
        self.path = path
        self._con: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def open(self) -> "EventStore":
        try:
            if self.path != ":memory:":
                os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
            con = sqlite3.connect(self.path, check_same_thread=False, timeout=30)
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA busy_timeout=5000;")
            con.execute(SCHEMA)
            for ddl in INDEXES:
                con.execute(ddl)
            con.commit()
        except (OSError, sqlite3.Error) as e:
            raise StartupError(f"cannot open event store {self.path}: {e}") from e
        self._con = con
        logger.info("Event store ready at %s", self.path)
        return self

    def insert(self, ev: NormalizedEvent) -> int:
        if self._con is None:
            raise StorageError("event store is not open")
        row = ev.model_dump(include=set(COLUMNS))
        values = [row[c] for c in COLUMNS]
        # datetime → ISO 8601 (l'adapter di default sqlite3 è deprecato)
        values[COLUMNS.index("timestamp")] = ev.timestamp.isoformat()
        values[COLUMNS.index("created_at")] = ev.created_at.isoformat()
        sql = "INSERT INTO events ({}) VALUES ({})".format(
            ", ".join(COLUMNS), ", ".join("?" for _ in COLUMNS)
        )
        try:
            with self._lock:
                cur = self._con.execute(sql, values)
                self._con.commit()
        except sqlite3.Error as e:
            raise StorageError(f"insert failed: {e}") from e
        return cur.lastrowid

    def count(self) -> int:
        if self._con is None:
            return 0
        with self._lock:
            return int(self._con.execute("SELECT COUNT(*) FROM events").fetchone()[0])

    def close(self):
        if self._con is not None:
            with self._lock:
                self._con.close()
            self._con = None
