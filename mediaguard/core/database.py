from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Set

import psycopg2
import structlog
from psycopg2 import extras
from psycopg2.pool import ThreadedConnectionPool

from mediaguard import config
from mediaguard.core.errors import AlreadyRegistered, AlreadyResolved, NotFound
from mediaguard.core.store import RegistryStore
from mediaguard.models.fingerprint import FingerprintTriple
from mediaguard.models.registry import Dispute, Record, RegistryStats

logger = structlog.get_logger()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS records (
    exact_hash  TEXT PRIMARY KEY,
    owner       TEXT NOT NULL,
    perceptual  TEXT,
    audio       TEXT,
    locator     TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL,
    disputed    BOOLEAN NOT NULL DEFAULT FALSE,
    view_count  BIGINT NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS perceptual_index (
    id          BIGSERIAL PRIMARY KEY,
    perceptual  TEXT NOT NULL,
    exact_hash  TEXT NOT NULL REFERENCES records(exact_hash)
);
CREATE INDEX IF NOT EXISTS idx_perceptual_index_key ON perceptual_index (perceptual, id);

CREATE TABLE IF NOT EXISTS audio_index (
    id          BIGSERIAL PRIMARY KEY,
    audio       TEXT NOT NULL,
    exact_hash  TEXT NOT NULL REFERENCES records(exact_hash)
);
CREATE INDEX IF NOT EXISTS idx_audio_index_key ON audio_index (audio, id);

CREATE TABLE IF NOT EXISTS owner_index (
    id          BIGSERIAL PRIMARY KEY,
    owner       TEXT NOT NULL,
    exact_hash  TEXT NOT NULL REFERENCES records(exact_hash)
);
CREATE INDEX IF NOT EXISTS idx_owner_index_key ON owner_index (owner, id);

CREATE TABLE IF NOT EXISTS disputes (
    id                  BIGINT PRIMARY KEY,
    accuser             TEXT NOT NULL,
    target_exact_hash   TEXT NOT NULL REFERENCES records(exact_hash),
    reason              TEXT NOT NULL CHECK (length(reason) > 0),
    created_at          TIMESTAMPTZ NOT NULL,
    resolved            BOOLEAN NOT NULL DEFAULT FALSE,
    resolver            TEXT,
    upheld              BOOLEAN NOT NULL DEFAULT FALSE,
    resolved_at         TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS roles (
    principal   TEXT NOT NULL,
    role        TEXT NOT NULL CHECK (role IN ('admin', 'arbitrator')),
    PRIMARY KEY (principal, role)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_roles_single_admin ON roles (role) WHERE role = 'admin';

CREATE TABLE IF NOT EXISTS counters (
    name    TEXT PRIMARY KEY,
    value   BIGINT NOT NULL DEFAULT 0
);
INSERT INTO counters (name, value) VALUES
    ('total_registered', 0),
    ('total_duplicates', 0),
    ('dispute_count', 0)
ON CONFLICT (name) DO NOTHING;
"""

RECORD_COLUMNS = "exact_hash, owner, perceptual, audio, locator, created_at, disputed, view_count"
DISPUTE_COLUMNS = (
    "id, accuser, target_exact_hash, reason, created_at, resolved, resolver, upheld, resolved_at"
)


def _row_to_record(row: Dict) -> Record:
    return Record(
        owner=row["owner"],
        fingerprint=FingerprintTriple(exact=row["exact_hash"],
                                      perceptual=row["perceptual"],
                                      audio=row["audio"]),
        locator=row["locator"],
        created_at=row["created_at"],
        disputed=row["disputed"],
        view_count=row["view_count"],
    )


class PostgresStore(RegistryStore):
    """
    PostgreSQL registry store.

    Every write runs in a single transaction. The primary key on
    ``records.exact_hash`` guarantees one winner when several processes
    register the same content concurrently.
    """

    def __init__(self,
                 dsn: str = config.DB_DSN,
                 min_connections: int = config.DB_MIN_CONNECTIONS,
                 max_connections: int = config.DB_MAX_CONNECTIONS,
                 initialize: bool = True):
        self.dsn = dsn
        try:
            self._pool = ThreadedConnectionPool(min_connections, max_connections, dsn)
        except psycopg2.Error as e:
            logger.error("Failed to initialize registry connection pool", error=str(e))
            raise

        logger.info("Registry connection pool initialized",
                    min_connections=min_connections,
                    max_connections=max_connections)
        if initialize:
            self.initialize_schema()

    @contextmanager
    def get_db_connection(self):
        """Transaction-scoped connection: commit on success, rollback on any error."""
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def _cursor(self):
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                yield cur

    def initialize_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("Registry schema ensured")

    def check_connection(self) -> bool:
        try:
            with self._cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                return cur.fetchone()["ok"] == 1
        except psycopg2.Error as e:
            logger.error("Registry database connection check failed", error=str(e))
            return False

    def close(self) -> None:
        self._pool.closeall()

    # Records and indices

    def get_record(self, exact_hash: str) -> Optional[Record]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {RECORD_COLUMNS} FROM records WHERE exact_hash = %s", (exact_hash,))
            row = cur.fetchone()
        return _row_to_record(row) if row else None

    def insert_record(self, record: Record) -> None:
        fp = record.fingerprint
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO records (exact_hash, owner, perceptual, audio, locator, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (exact_hash) DO NOTHING
                RETURNING exact_hash
                """,
                (fp.exact, record.owner, fp.perceptual, fp.audio, record.locator, record.created_at),
            )
            if cur.fetchone() is None:
                raise AlreadyRegistered(fp.exact)

            if fp.perceptual is not None:
                cur.execute("INSERT INTO perceptual_index (perceptual, exact_hash) VALUES (%s, %s)",
                            (fp.perceptual, fp.exact))
            if fp.audio is not None:
                cur.execute("INSERT INTO audio_index (audio, exact_hash) VALUES (%s, %s)",
                            (fp.audio, fp.exact))
            cur.execute("INSERT INTO owner_index (owner, exact_hash) VALUES (%s, %s)",
                        (record.owner, fp.exact))
            self._bump(cur, "total_registered")

        logger.debug("Record inserted", exact_hash=fp.exact, owner=record.owner)

    def _index_lookup(self, table: str, column: str, key: str, limit: Optional[int] = None) -> List[str]:
        sql = f"SELECT exact_hash FROM {table} WHERE {column} = %s ORDER BY id"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        with self._cursor() as cur:
            cur.execute(sql, (key,))
            return [row["exact_hash"] for row in cur.fetchall()]

    def hashes_by_owner(self, owner: str) -> List[str]:
        return self._index_lookup("owner_index", "owner", owner)

    def first_by_perceptual(self, perceptual: str) -> Optional[str]:
        hashes = self._index_lookup("perceptual_index", "perceptual", perceptual, limit=1)
        return hashes[0] if hashes else None

    def first_by_audio(self, audio: str) -> Optional[str]:
        hashes = self._index_lookup("audio_index", "audio", audio, limit=1)
        return hashes[0] if hashes else None

    def increment_views(self, exact_hash: str) -> int:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE records SET view_count = view_count + 1 WHERE exact_hash = %s "
                "RETURNING view_count",
                (exact_hash,),
            )
            row = cur.fetchone()
            if row is None:
                raise NotFound(f"Record not found: {exact_hash}")
            return row["view_count"]

    # Disputes

    def create_dispute(self, accuser: str, target_exact_hash: str, reason: str,
                       created_at: datetime) -> Dispute:
        with self._cursor() as cur:
            cur.execute("SELECT exact_hash FROM records WHERE exact_hash = %s FOR UPDATE",
                        (target_exact_hash,))
            if cur.fetchone() is None:
                raise NotFound(f"Record not found: {target_exact_hash}")

            # Row lock on the counter keeps dispute ids gapless and sequential
            dispute_id = self._bump(cur, "dispute_count") - 1
            cur.execute(
                f"""
                INSERT INTO disputes (id, accuser, target_exact_hash, reason, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {DISPUTE_COLUMNS}
                """,
                (dispute_id, accuser, target_exact_hash, reason, created_at),
            )
            row = cur.fetchone()
            cur.execute("UPDATE records SET disputed = TRUE WHERE exact_hash = %s",
                        (target_exact_hash,))
        return Dispute(**row)

    def get_dispute(self, dispute_id: int) -> Optional[Dispute]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {DISPUTE_COLUMNS} FROM disputes WHERE id = %s", (dispute_id,))
            row = cur.fetchone()
        return Dispute(**row) if row else None

    def resolve_dispute(self, dispute_id: int, upheld: bool, resolver: str,
                        resolved_at: datetime) -> Dispute:
        with self._cursor() as cur:
            cur.execute("SELECT resolved, target_exact_hash FROM disputes WHERE id = %s FOR UPDATE",
                        (dispute_id,))
            current = cur.fetchone()
            if current is None:
                raise NotFound(f"Dispute not found: {dispute_id}")
            if current["resolved"]:
                raise AlreadyResolved(f"Dispute already resolved: {dispute_id}")

            cur.execute(
                f"""
                UPDATE disputes
                SET resolved = TRUE, upheld = %s, resolver = %s, resolved_at = %s
                WHERE id = %s
                RETURNING {DISPUTE_COLUMNS}
                """,
                (upheld, resolver, resolved_at, dispute_id),
            )
            row = cur.fetchone()
            if not upheld:
                cur.execute("UPDATE records SET disputed = FALSE WHERE exact_hash = %s",
                            (current["target_exact_hash"],))
        return Dispute(**row)

    # Roles

    def get_admin(self) -> Optional[str]:
        with self._cursor() as cur:
            cur.execute("SELECT principal FROM roles WHERE role = 'admin'")
            row = cur.fetchone()
        return row["principal"] if row else None

    def set_admin(self, principal: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM roles WHERE role = 'admin'")
            cur.execute("INSERT INTO roles (principal, role) VALUES (%s, 'admin')", (principal,))

    def arbitrators(self) -> Set[str]:
        with self._cursor() as cur:
            cur.execute("SELECT principal FROM roles WHERE role = 'arbitrator'")
            return {row["principal"] for row in cur.fetchall()}

    def add_arbitrator(self, principal: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO roles (principal, role) VALUES (%s, 'arbitrator') "
                "ON CONFLICT DO NOTHING RETURNING principal",
                (principal,),
            )
            return cur.fetchone() is not None

    def remove_arbitrator(self, principal: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM roles WHERE principal = %s AND role = 'arbitrator' RETURNING principal",
                (principal,),
            )
            return cur.fetchone() is not None

    # Counters

    def _bump(self, cur, name: str) -> int:
        cur.execute("UPDATE counters SET value = value + 1 WHERE name = %s RETURNING value", (name,))
        return cur.fetchone()["value"]

    def increment_duplicates(self) -> int:
        with self._cursor() as cur:
            return self._bump(cur, "total_duplicates")

    def stats(self) -> RegistryStats:
        with self._cursor() as cur:
            cur.execute("SELECT name, value FROM counters")
            counters = {row["name"]: row["value"] for row in cur.fetchall()}
        return RegistryStats(
            total_registered=counters.get("total_registered", 0),
            total_duplicates_detected=counters.get("total_duplicates", 0),
            total_disputes=counters.get("dispute_count", 0),
        )

    def truncate(self) -> None:
        """Remove all registry state. Intended for test databases."""
        with self._cursor() as cur:
            cur.execute(
                "TRUNCATE perceptual_index, audio_index, owner_index, disputes, records, roles"
            )
            cur.execute("UPDATE counters SET value = 0")
