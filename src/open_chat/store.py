"""Local session and message store."""

from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Protocol

from open_chat.types import Message, Session, part_from_dict, part_to_dict


class MessageStore(Protocol):
    """What the client consumer needs from persistence."""

    def add_message(self, message: Message) -> None: ...

    def delete_message(self, message_id: str) -> None: ...

    def list_messages(self, session_id: str) -> list[Message]: ...

    def touch_session(self, session_id: str) -> None: ...


class SQLiteMessageStore:
    """SQLite-backed sessions and messages.

    Messages are keyed by id; ``add_message`` with an existing id replaces
    the row, so a turn can persist its message more than once.
    """

    def __init__(self, db_path: str = "~/.open_chat/chat.db") -> None:
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._conn = sqlite3.connect(self.db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                updated_at REAL NOT NULL
            );
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                parts TEXT NOT NULL,
                metadata TEXT DEFAULT '{}',
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_msg_session ON messages(session_id);
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, name: str = "New chat") -> Session:
        session = Session(name=name)
        self._conn.execute(
            "INSERT INTO sessions (id, name, updated_at) VALUES (?, ?, ?)",
            (session.id, session.name, session.updated_at),
        )
        self._conn.commit()
        return session

    def get_session(self, session_id: str) -> Session | None:
        row = self._conn.execute(
            "SELECT id, name, updated_at FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return Session(id=row[0], name=row[1], updated_at=row[2]) if row else None

    def list_sessions(self) -> list[Session]:
        rows = self._conn.execute(
            "SELECT id, name, updated_at FROM sessions ORDER BY updated_at DESC"
        ).fetchall()
        return [Session(id=r[0], name=r[1], updated_at=r[2]) for r in rows]

    def touch_session(self, session_id: str) -> None:
        self._conn.execute(
            "UPDATE sessions SET updated_at = ? WHERE id = ?",
            (time.time(), session_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> None:
        if not message.parts:
            raise ValueError(f"refusing to persist message {message.id} with no parts")
        self._conn.execute(
            "INSERT OR REPLACE INTO messages "
            "(id, session_id, role, parts, metadata, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                message.id,
                message.session_id,
                message.role,
                json.dumps([part_to_dict(p) for p in message.parts]),
                json.dumps(message.metadata),
                message.created_at,
            ),
        )
        self._conn.commit()

    def delete_message(self, message_id: str) -> None:
        self._conn.execute("DELETE FROM messages WHERE id = ?", (message_id,))
        self._conn.commit()

    def list_messages(self, session_id: str) -> list[Message]:
        rows = self._conn.execute(
            "SELECT id, role, parts, metadata, created_at FROM messages "
            "WHERE session_id = ? ORDER BY created_at, rowid",
            (session_id,),
        ).fetchall()
        messages = []
        for msg_id, role, parts_str, meta_str, ts in rows:
            parts = [p for p in map(part_from_dict, json.loads(parts_str)) if p is not None]
            messages.append(Message(
                id=msg_id,
                role=role,
                parts=parts,
                session_id=session_id,
                created_at=ts,
                metadata=json.loads(meta_str or "{}"),
            ))
        return messages

    def close(self) -> None:
        self._conn.close()
