"""Local ledger of batch runs. SQLite by default; set DATABASE_URL to use another database.
init_db ensures the tables exist; if the configured database cannot be opened it logs and falls back to in-memory SQLite."""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from cloudconv import config as app_config

logger = logging.getLogger("cloudconv.db")

_engine: Optional[Engine] = None
# Batch workers write from several threads; SQLite allows one writer at a time.
_write_lock = threading.Lock()

REQUIRED_TABLES = ("batches", "batch_files")
IN_MEMORY_URL = "sqlite:///:memory:"


def _is_sqlite() -> bool:
    return app_config.DATABASE_URL.startswith("sqlite")


def _make_engine(url: str) -> Engine:
    if url == IN_MEMORY_URL:
        # One shared connection, otherwise every connect() sees an empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite:///"):
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _make_engine(app_config.DATABASE_URL)
        logger.info("Database engine created (%s)", _engine.dialect.name)
    return _engine


def _create_tables(conn) -> None:
    id_column = "id INTEGER PRIMARY KEY AUTOINCREMENT" if _is_sqlite() else "id BIGINT AUTO_INCREMENT PRIMARY KEY"
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS batches (
            batch_id VARCHAR(64) PRIMARY KEY,
            status VARCHAR(32) NOT NULL,
            target_format VARCHAR(32),
            file_count INTEGER NOT NULL DEFAULT 0,
            error TEXT,
            created_at VARCHAR(40) NOT NULL,
            updated_at VARCHAR(40) NOT NULL
        )
    """))
    conn.execute(text(f"""
        CREATE TABLE IF NOT EXISTS batch_files (
            {id_column},
            batch_id VARCHAR(64) NOT NULL,
            source VARCHAR(1024) NOT NULL,
            destination VARCHAR(1024),
            status VARCHAR(32) NOT NULL,
            error TEXT,
            process_url VARCHAR(1024),
            from_history INTEGER NOT NULL DEFAULT 0,
            created_at VARCHAR(40) NOT NULL
        )
    """))
    conn.commit()


def init_db(database_url: Optional[str] = None) -> None:
    """Prepare the ledger: ensure tables exist. Falls back to in-memory SQLite on failure."""
    global _engine
    if database_url is not None:
        app_config.DATABASE_URL = database_url
    _engine = None
    try:
        with get_engine().connect() as conn:
            _create_tables(conn)
        logger.info("Ledger ready (tables: %s)", ", ".join(REQUIRED_TABLES))
        return
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Ledger database %s unavailable: %s. Using in-memory SQLite.", app_config.DATABASE_URL, e)

    # Batch records will not outlive this process
    app_config.DATABASE_URL = IN_MEMORY_URL
    _engine = None
    with get_engine().connect() as conn:
        _create_tables(conn)


@contextmanager
def session():
    with _write_lock, get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def save_batch(batch_id: str, status: str, target_format: str, file_count: int) -> None:
    now = _now_iso()
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO batches (batch_id, status, target_format, file_count, error, created_at, updated_at)
                VALUES (:batch_id, :status, :target_format, :file_count, NULL, :now, :now)
            """),
            {"batch_id": batch_id, "status": status, "target_format": target_format,
             "file_count": file_count, "now": now},
        )


def update_batch_status(batch_id: str, status: str, error: Optional[str] = None) -> None:
    with session() as conn:
        conn.execute(
            text("UPDATE batches SET status = :status, error = :error, updated_at = :now WHERE batch_id = :batch_id"),
            {"batch_id": batch_id, "status": status, "error": error, "now": _now_iso()},
        )


def record_file_result(
    batch_id: str,
    source: str,
    destination: str,
    status: str,
    error: Optional[str] = None,
    process_url: str = "",
    from_history: bool = False,
) -> None:
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO batch_files (batch_id, source, destination, status, error, process_url, from_history, created_at)
                VALUES (:batch_id, :source, :destination, :status, :error, :process_url, :from_history, :now)
            """),
            {"batch_id": batch_id, "source": source, "destination": destination, "status": status,
             "error": error, "process_url": process_url or None, "from_history": int(from_history),
             "now": _now_iso()},
        )


def get_batch_from_db(batch_id: str) -> Optional[dict]:
    """Return the batch row as a dict, or None."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("SELECT batch_id, status, target_format, file_count, error, created_at, updated_at "
                 "FROM batches WHERE batch_id = :id"),
            {"id": batch_id},
        ).fetchone()
    if not row:
        return None
    return {
        "batch_id": row[0],
        "status": row[1],
        "target_format": row[2],
        "file_count": row[3],
        "error": row[4],
        "created_at": row[5],
        "updated_at": row[6],
    }


def list_batch_files(batch_id: str) -> list[dict]:
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("SELECT source, destination, status, error, process_url, from_history "
                 "FROM batch_files WHERE batch_id = :id ORDER BY id"),
            {"id": batch_id},
        ).fetchall()
    return [
        {
            "source": r[0],
            "destination": r[1],
            "status": r[2],
            "error": r[3],
            "process_url": r[4],
            "from_history": bool(r[5]),
        }
        for r in rows
    ]
