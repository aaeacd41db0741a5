"""Point-in-time copies of the portfolio database.

Uses SQLite's online backup API, so a copy taken while the bot is running
(WAL mode) is still consistent.
"""

from __future__ import annotations

import datetime as dt
import sqlite3
from pathlib import Path

from ethsim.engine.errors import PersistenceError
from ethsim.observability.logger import get_logger

log = get_logger(__name__)

_PREFIX = "ethsim_"


def list_backups(backup_dir: str) -> list[Path]:
    """Existing backups, newest first."""
    dest_dir = Path(backup_dir)
    if not dest_dir.is_dir():
        return []
    # Names embed a sortable UTC timestamp
    return sorted(dest_dir.glob(f"{_PREFIX}*.db"), reverse=True)


def backup_database(
    source_path: str = "data/ethsim.db",
    backup_dir: str = "data/backups",
    max_backups: int = 10,
) -> str:
    """Create a timestamped backup and prune the oldest beyond ``max_backups``.

    Returns:
        Path to the new backup file.
    """
    src = Path(source_path)
    if not src.exists():
        raise FileNotFoundError(f"Source database not found: {source_path}")

    dest_dir = Path(backup_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    stamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    dest_path = dest_dir / f"{_PREFIX}{stamp}.db"

    src_conn = sqlite3.connect(str(src))
    dst_conn = sqlite3.connect(str(dest_path))
    try:
        src_conn.backup(dst_conn)
    except sqlite3.Error as e:
        raise PersistenceError(f"backup failed: {e}") from e
    finally:
        dst_conn.close()
        src_conn.close()
    log.info("backup.created", path=str(dest_path), size_bytes=dest_path.stat().st_size)

    for old in list_backups(backup_dir)[max(max_backups, 1):]:
        old.unlink()
        log.info("backup.pruned", path=str(old))

    return str(dest_path)
