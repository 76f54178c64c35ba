import logging
import sqlite3
from datetime import datetime

from pingsense.probe.results import to_ms

logger = logging.getLogger(__name__)


class PingSenseDB:

    def __init__(self, db_path='pingsense.db'):
        # Initialization
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        # Setting the row factory
        self.conn.row_factory = sqlite3.Row
        self.cursor = self.conn.cursor()
        # Enable foreign keys
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_tables()

    def create_tables(self):
        logger.debug("Creating database tables if they do not exist...")
        # sessions table, one row per PingResults
        self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp REAL NOT NULL,

                -- Target
                target TEXT NOT NULL,
                address TEXT,

                -- Summary
                success BOOLEAN NOT NULL,
                error TEXT NOT NULL,
                number_of_tests INTEGER NOT NULL,
                number_of_replies INTEGER NOT NULL,
                packet_loss_percent REAL NOT NULL,

                -- Round trip times (ms)
                min_ms REAL,
                avg_ms REAL,
                max_ms REAL,
                stddev_ms REAL,

                -- Timing
                timeout_ms REAL,
                runtime_ms REAL
            );"""
        )

        self.cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_session_time ON sessions(timestamp);
        """)
        self.cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_session_target ON sessions(target);
        """)

        # probes table
        self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS probes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                error TEXT NOT NULL,
                runtime_ms REAL NOT NULL,

                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );
        """)
        self.cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_probe_session ON probes(session_id);
        """)

        self.conn.commit()

    def insert_session(self, target, address, results, timestamp=None):
        query = """
            INSERT INTO sessions (timestamp, target, address, success, error, number_of_tests, number_of_replies,
                                  packet_loss_percent, min_ms, avg_ms, max_ms, stddev_ms, timeout_ms, runtime_ms)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """
        self.cursor.execute(query, (
            timestamp if timestamp is not None else datetime.now().timestamp(),
            str(target),
            str(address) if address is not None else None,
            results.success,
            results.error.name,
            len(results.results),
            results.number_of_replies,
            results.packet_loss_percent,
            to_ms(results.min),
            to_ms(results.avg),
            to_ms(results.max),
            results.stddev,
            to_ms(results.timeout),
            to_ms(results.runtime),
        ))
        session_id = self.cursor.lastrowid

        self.cursor.executemany(
            "INSERT INTO probes (session_id, position, error, runtime_ms) VALUES (?, ?, ?, ?);",
            [
                (session_id, position, result.error.name, result.runtime_ms)
                for position, result in enumerate(results.results)
            ],
        )
        self.conn.commit()
        return session_id

    def get_sessions(self, limit=100, filters=None):
        query = "SELECT * FROM sessions WHERE 1=1"
        params = []

        if filters:
            if 'target' in filters:
                query += " AND target = ?"
                params.append(filters['target'])

            if 'error' in filters:
                query += " AND error = ?"
                params.append(filters['error'])

            if 'start_time' in filters:
                query += " AND timestamp >= ?"
                params.append(filters['start_time'])

            if 'end_time' in filters:
                query += " AND timestamp <= ?"
                params.append(filters['end_time'])

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)
        self.cursor.execute(query, params)
        return [dict(row) for row in self.cursor.fetchall()]

    def get_probes(self, session_id):
        query = """
            SELECT * from probes
            WHERE session_id = ?
            ORDER BY position;
        """
        self.cursor.execute(query, (session_id,))
        return [dict(row) for row in self.cursor.fetchall()]

    def get_statistics(self):
        stats = {}
        # metrices
        self.cursor.execute("""
            SELECT COUNT(*) as total_sessions,
                   COALESCE(SUM(number_of_tests), 0) as total_probes,
                   COALESCE(SUM(number_of_replies), 0) as total_replies
            FROM sessions;
        """)
        stats.update(dict(self.cursor.fetchone()))

        self.cursor.execute("""
            SELECT error, COUNT(*) as count FROM probes GROUP BY error ORDER BY count DESC;
        """)
        stats['error_distribution'] = {row['error']: row['count'] for row in self.cursor.fetchall()}

        self.cursor.execute("""
            SELECT target,
                   COUNT(*) as sessions,
                   AVG(packet_loss_percent) as avg_loss,
                   AVG(CASE WHEN number_of_replies > 0 THEN avg_ms END) as avg_rtt_ms
            FROM sessions
            GROUP BY target
            ORDER BY sessions DESC;
        """)
        stats['targets'] = [dict(row) for row in self.cursor.fetchall()]
        return stats

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("DB Closed")
