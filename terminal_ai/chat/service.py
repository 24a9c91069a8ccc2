"""
Chat service: turns a user message plus session history into a ChatRequest,
dispatches it, and records the exchange in the session store.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from terminal_ai.chat.sessions import ChatSession, SessionStore
from terminal_ai.chat.skills import SkillLibrary, apply_skills
from terminal_ai.interfaces.services.llm import IDispatcher
from terminal_ai.providers.base.models import AttemptOutcome, ChatRequest, DispatchResult, Message

logger = logging.getLogger(__name__)

HISTORY_ROLES = ("user", "assistant")


class ChatService:
    def __init__(self, dispatcher: IDispatcher, sessions: SessionStore, skills: Optional[SkillLibrary] = None) -> None:
        self.dispatcher = dispatcher
        self.sessions = sessions
        self.skills = skills

    def start_session(self, first_message: str, provider: str = "", user: str = "") -> ChatSession:
        return self.sessions.create(first_message, provider=provider, user=user)

    def build_request(self, session: Optional[ChatSession], message: str, model: str = "") -> ChatRequest:
        """History messages in conversational order, then the new message with skill templates applied."""
        messages = []
        if session is not None:
            messages = [Message(role=m.role, content=m.content) for m in session.messages if m.role in HISTORY_ROLES]
        content = message
        if self.skills is not None:
            matched = self.skills.find_matching(message)
            if matched:
                logger.info(f"Applying skills: {', '.join(s.name for s in matched)}")
                content = apply_skills(message, matched)
        messages.append(Message(role="user", content=content))
        return ChatRequest(messages=tuple(messages), model=model)

    def send(
        self,
        session_id: Optional[str],
        message: str,
        stream: bool = False,
        on_delta: Optional[Callable[[str], None]] = None,
        cancel=None,
        on_attempt: Optional[Callable[[AttemptOutcome], None]] = None,
        prefer: Optional[str] = None,
    ) -> DispatchResult:
        """
        Dispatch message within a session (or one-shot when session_id is None).
        The user message is stored before dispatch; the assistant reply only on success.
        """
        session = self.sessions.get(session_id) if session_id else None
        request = self.build_request(session, message)
        if session is not None:
            self.sessions.append(session.id, "user", message)

        if stream:
            result = self.dispatcher.dispatch_stream(request, on_delta=on_delta, cancel=cancel, on_attempt=on_attempt, prefer=prefer)
        else:
            result = self.dispatcher.dispatch(request, cancel=cancel, on_attempt=on_attempt, prefer=prefer)

        if session is not None and result.text:
            self.sessions.append(session.id, "assistant", result.text)
        return result
