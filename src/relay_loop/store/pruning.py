from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from relay_loop.store.store import SqliteStore


def fail_stale_sessions(store: SqliteStore, *, timeout_minutes: int = 60) -> int:
    """Mark sessions stuck in ``running`` for longer than the timeout as failed."""
    now = datetime.now(UTC)
    cutoff = (now - timedelta(minutes=max(0, timeout_minutes))).isoformat(timespec="seconds")
    stamp = now.isoformat(timespec="seconds")

    with store.transaction():
        cursor = store.execute(
            """
            UPDATE sessions
            SET status = 'failed', error = ?, completed_at = ?, updated_at = ?
            WHERE status = 'running' AND started_at < ?
            """,
            (
                f"Session timed out: stuck in running for more than {timeout_minutes} minutes.",
                stamp,
                stamp,
                cutoff,
            ),
        )
    count = cursor.rowcount
    if count:
        logger.warning(f"Marked {count} stale running session(s) as failed")
    return count


def prune_sessions(store: SqliteStore, *, older_than_days: int = 30) -> int:
    cutoff = (datetime.now(UTC) - timedelta(days=max(1, older_than_days))).isoformat(timespec="seconds")

    with store.transaction():
        stale_ids = [
            str(row["id"])
            for row in store.execute(
                "SELECT id FROM sessions WHERE created_at < ?",
                (cutoff,),
            ).fetchall()
        ]
        if stale_ids:
            store.executemany("DELETE FROM events WHERE session_id = ?", [(sid,) for sid in stale_ids])
            store.executemany("DELETE FROM sessions WHERE id = ?", [(sid,) for sid in stale_ids])

    if stale_ids:
        logger.info(f"Pruned {len(stale_ids)} session(s) older than {older_than_days} days")
    return len(stale_ids)
