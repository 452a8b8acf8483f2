from relay_loop.store.event_sink import BroadcastSink
from relay_loop.store.models import SessionRecord, TurnRecord
from relay_loop.store.pruning import fail_stale_sessions, prune_sessions
from relay_loop.store.session_repository import SessionRepository
from relay_loop.store.store import SqliteStore

__all__ = [
    "BroadcastSink",
    "SessionRecord",
    "SessionRepository",
    "SqliteStore",
    "TurnRecord",
    "fail_stale_sessions",
    "prune_sessions",
]
