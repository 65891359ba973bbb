import asyncio
import functools
import logging
import os
from databases import Database
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from dotenv import load_dotenv

from atelier.errors import StateConflictError

load_dotenv()
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./atelier.db')
database = Database(DATABASE_URL)
engine = create_engine(DATABASE_URL, pool_pre_ping=True)
Base = declarative_base()

LOCK_RETRIES = int(os.getenv('DB_LOCK_RETRIES', '5'))

log = logging.getLogger("atelier.db")


def row_to_dict(row, keys) -> dict:
    """Copie les colonnes demandées d'un Record `databases` (types déjà convertis)."""
    return {k: row[k] for k in keys}


def is_unique_violation(exc: Exception) -> bool:
    # sqlite3.IntegrityError / asyncpg.UniqueViolationError selon le backend
    return type(exc).__name__ in ("IntegrityError", "UniqueViolationError")


def is_lock_contention(exc: Exception) -> bool:
    # SQLite n'a qu'un écrivain: le second reçoit "database is locked" au lieu d'attendre
    return type(exc).__name__ == "OperationalError" and "locked" in str(exc).lower()


def retry_on_lock(fn):
    """Rejoue une écriture transactionnelle refusée pour verrou SQLite.

    La transaction perdante a été annulée; la rejouer relit l'état validé par
    la gagnante, donc les contrôles métier s'appliquent à nouveau.
    """
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        for attempt in range(1, LOCK_RETRIES + 1):
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not is_lock_contention(exc):
                    raise
                if attempt == LOCK_RETRIES:
                    log.warning("write_abandoned op=%s attempts=%s", fn.__name__, attempt)
                    raise StateConflictError("Concurrent write in progress, retry later") from exc
                log.info("write_retry op=%s attempt=%s", fn.__name__, attempt)
                await asyncio.sleep(0.02 * attempt)
    return wrapper
