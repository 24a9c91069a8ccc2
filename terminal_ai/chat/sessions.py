"""
Chat session store (JSON file).

Layout: <data dir>/chat-history.json
  {"sessions": [{id, title, provider, user, created_at, updated_at, messages: [{role, content, timestamp}]}]}

Sessions are listed most recently updated first. Every mutation rewrites the file.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from terminal_ai.settings.paths import data_dir

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "chat-history.json"
TITLE_MAX_CHARS = 50


class SessionNotFoundError(KeyError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def truncate_title(title: str) -> str:
    title = " ".join((title or "").split())
    if len(title) <= TITLE_MAX_CHARS:
        return title
    return title[:TITLE_MAX_CHARS].rstrip() + "..."


@dataclass
class ChatMessage:
    role: str
    content: str
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class ChatSession:
    id: str
    title: str
    provider: str = ""
    user: str = ""
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    messages: List[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSession":
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            provider=str(data.get("provider") or ""),
            user=str(data.get("user") or ""),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
            messages=[
                ChatMessage(role=str(m.get("role") or ""), content=str(m.get("content") or ""), timestamp=str(m.get("timestamp") or ""))
                for m in (data.get("messages") or [])
                if isinstance(m, dict)
            ],
        )


class SessionStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else data_dir() / HISTORY_FILENAME
        self._lock = threading.Lock()
        self._sessions: List[ChatSession] = self._load()

    # -------------------- queries --------------------

    def get(self, session_id: str) -> ChatSession:
        with self._lock:
            return self._find(session_id)

    def list(self) -> List[ChatSession]:
        with self._lock:
            return sorted(self._sessions, key=lambda s: s.updated_at, reverse=True)

    def latest(self) -> Optional[ChatSession]:
        sessions = self.list()
        return sessions[0] if sessions else None

    # -------------------- mutations --------------------

    def create(self, title: str, provider: str = "", user: str = "") -> ChatSession:
        session = ChatSession(id=f"chat_{time.time_ns()}", title=truncate_title(title) or "New chat", provider=provider, user=user)
        with self._lock:
            self._sessions.append(session)
            self._save()
        return session

    def append(self, session_id: str, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        with self._lock:
            session = self._find(session_id)
            session.messages.append(message)
            session.updated_at = message.timestamp
            self._save()
        return message

    def delete(self, session_id: str) -> None:
        with self._lock:
            session = self._find(session_id)
            self._sessions.remove(session)
            self._save()

    def clear(self) -> None:
        with self._lock:
            self._sessions = []
            self._save()

    def export(self, session_id: str, fmt: str = "md") -> str:
        """Render a session as markdown ('md') or plain text ('txt')."""
        session = self.get(session_id)
        if fmt == "md":
            lines = [
                f"# {session.title}",
                "",
                f"**ID:** {session.id}",
                f"**Provider:** {session.provider}",
                f"**Created:** {session.created_at}",
                "",
                "---",
                "",
                "## Conversation",
                "",
            ]
            for m in session.messages:
                lines += [f"### {'User' if m.role == 'user' else 'Assistant'}", m.content, ""]
            return "\n".join(lines)
        if fmt == "txt":
            lines = [
                f"Title: {session.title}",
                f"ID: {session.id}",
                f"Provider: {session.provider}",
                f"Created: {session.created_at}",
                "",
                "=" * 60,
                "",
            ]
            lines += [f"[{'User' if m.role == 'user' else 'AI'}] {m.content}" for m in session.messages]
            return "\n".join(lines) + "\n"
        raise ValueError(f"Unsupported export format: {fmt}")

    # -------------------- internal helpers --------------------

    def _find(self, session_id: str) -> ChatSession:
        for s in self._sessions:
            if s.id == session_id:
                return s
        raise SessionNotFoundError(session_id)

    def _load(self) -> List[ChatSession]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read chat history {self.path}: {e}")
            return []
        raw = data.get("sessions") if isinstance(data, dict) else None
        return [ChatSession.from_dict(s) for s in (raw or []) if isinstance(s, dict)]

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"sessions": [s.to_dict() for s in self._sessions]}
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
