# store.py
import json
import sqlite3
import threading
from datetime import datetime

import pandas as pd


class YardStore:
    """Key-value store for yard state plus the container movement log, on SQLite."""

    def __init__(self, path="yard.db"):
        # Single connection reused across reruns; WAL for better concurrency
        self.path = str(path)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")
        self.lock = threading.Lock()
        with self.lock:
            c = self.conn.cursor()
            c.execute('''
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
            ''')
            c.execute('''
            CREATE TABLE IF NOT EXISTS container_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                container_id TEXT,
                stage TEXT,
                slot_id TEXT,
                timestamp TEXT
            )
            ''')
            self.conn.commit()

    def get(self, key, default=None):
        """Stored value for key; default when absent or not valid JSON."""
        with self.lock:
            row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            value = json.loads(row[0])
        except (TypeError, ValueError):
            return default
        return default if value is None else value

    def put(self, key, value):
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self.lock:
            self.conn.execute(
                '''INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                 updated_at = excluded.updated_at''',
                (key, json.dumps(value), timestamp)
            )
            self.conn.commit()

    def delete(self, key):
        with self.lock:
            self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self.conn.commit()

    # ------------------- Movement log -------------------
    def log_movement(self, container_id, stage, slot_id=""):
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self.lock:
            self.conn.execute(
                '''INSERT INTO container_movements (container_id, stage, slot_id, timestamp)
                   VALUES (?, ?, ?, ?)''',
                (container_id, stage, slot_id, timestamp)
            )
            self.conn.commit()

    def query_movements(self, container_id=None, limit=200):
        with self.lock:
            if container_id:
                return pd.read_sql_query(
                    "SELECT * FROM container_movements WHERE container_id = ? ORDER BY id DESC",
                    self.conn, params=(container_id,)
                )
            return pd.read_sql_query(
                f"SELECT * FROM container_movements ORDER BY id DESC LIMIT {int(limit)}", self.conn
            )

    def movements_frame(self):
        with self.lock:
            return pd.read_sql_query("SELECT * FROM container_movements", self.conn)

    def clear_movements(self):
        with self.lock:
            self.conn.execute("DELETE FROM container_movements")
            self.conn.commit()

    def close(self):
        with self.lock:
            self.conn.close()


class MemoryStore:
    """In-process stand-in with the same surface, for yards that skip disk."""

    def __init__(self):
        self.data = {}
        self.movements = []

    def get(self, key, default=None):
        if key not in self.data:
            return default
        try:
            return json.loads(self.data[key])
        except (TypeError, ValueError):
            return default

    def put(self, key, value):
        self.data[key] = json.dumps(value)

    def delete(self, key):
        self.data.pop(key, None)

    def log_movement(self, container_id, stage, slot_id=""):
        self.movements.append({
            "container_id": container_id,
            "stage": stage,
            "slot_id": slot_id,
            "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        })

    def query_movements(self, container_id=None, limit=200):
        rows = [m for m in reversed(self.movements)
                if not container_id or m["container_id"] == container_id]
        if not container_id:
            rows = rows[:int(limit)]
        return pd.DataFrame(rows, columns=["container_id", "stage", "slot_id", "timestamp"])

    def movements_frame(self):
        return pd.DataFrame(self.movements, columns=["container_id", "stage", "slot_id", "timestamp"])

    def clear_movements(self):
        self.movements = []
