"""
Program Context Module
Tracks the active program per session to keep operations from crossing programs
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .dates import utcnow

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


@dataclass
class ProgramContext:
    program_id: str
    session_id: str
    started_at: datetime
    program_name: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "program_name": self.program_name,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class ProgramAccess:
    program_id: str
    user_id: str
    last_accessed: datetime
    access_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "user_id": self.user_id,
            "last_accessed": self.last_accessed.isoformat(),
            "access_count": self.access_count,
        }


class SessionStore(ABC):
    """Storage for per-session program contexts."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[ProgramContext]:
        ...

    @abstractmethod
    def set(self, session_id: str, context: ProgramContext) -> None:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    def values(self) -> List[ProgramContext]:
        ...

    def clear(self) -> None:
        for context in self.values():
            self.delete(context.session_id)


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._contexts: Dict[str, ProgramContext] = {}

    def get(self, session_id: str) -> Optional[ProgramContext]:
        return self._contexts.get(session_id)

    def set(self, session_id: str, context: ProgramContext) -> None:
        self._contexts[session_id] = context

    def delete(self, session_id: str) -> None:
        self._contexts.pop(session_id, None)

    def values(self) -> List[ProgramContext]:
        return list(self._contexts.values())

    def clear(self) -> None:
        self._contexts.clear()


class ProgramContextManager:
    """Active program per session plus a per-user access history.

    Build one per application and pass it to whatever needs it.
    """

    def __init__(self, store: Optional[SessionStore] = None) -> None:
        self.store = store or InMemorySessionStore()
        self._access: Dict[str, List[ProgramAccess]] = {}

    def set_active_program(
        self,
        program_id: str,
        program_name: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: str = DEFAULT_SESSION_ID,
    ) -> ProgramContext:
        if not program_id:
            raise ValueError("program_id is required")
        session_id = session_id or DEFAULT_SESSION_ID
        context = ProgramContext(
            program_id=program_id,
            session_id=session_id,
            started_at=utcnow(),
            program_name=program_name,
            user_id=user_id,
        )
        self.store.set(session_id, context)
        if user_id:
            self._track_access(user_id, program_id)
        LOGGER.info("Set active program %s (session: %s)", program_id, session_id)
        return context

    def get_active_program(self, session_id: str = DEFAULT_SESSION_ID) -> Optional[str]:
        context = self.store.get(session_id or DEFAULT_SESSION_ID)
        return context.program_id if context else None

    def get_active_context(self, session_id: str = DEFAULT_SESSION_ID) -> Optional[ProgramContext]:
        return self.store.get(session_id or DEFAULT_SESSION_ID)

    def clear_active_program(self, session_id: str = DEFAULT_SESSION_ID) -> None:
        session_id = session_id or DEFAULT_SESSION_ID
        self.store.delete(session_id)
        LOGGER.info("Cleared active program (session: %s)", session_id)

    def is_program_active(self, program_id: str, session_id: str = DEFAULT_SESSION_ID) -> bool:
        return self.get_active_program(session_id) == program_id

    def get_all_active_contexts(self) -> List[ProgramContext]:
        return self.store.values()

    def _track_access(self, user_id: str, program_id: str) -> None:
        history = self._access.setdefault(user_id, [])
        for access in history:
            if access.program_id == program_id:
                access.last_accessed = utcnow()
                access.access_count += 1
                return
        history.append(ProgramAccess(program_id=program_id, user_id=user_id, last_accessed=utcnow()))

    def get_user_access(self, user_id: str) -> List[ProgramAccess]:
        return list(self._access.get(user_id, []))

    def get_user_recent_programs(self, user_id: str, limit: int = 5) -> List[str]:
        """Program IDs the user touched, most recently accessed first."""

        history = sorted(self.get_user_access(user_id), key=lambda access: access.last_accessed, reverse=True)
        return [access.program_id for access in history[:limit]]

    def validate_program_context(self, program_id: str, session_id: str = DEFAULT_SESSION_ID) -> Dict[str, Any]:
        """
        Check that an operation targets the session's active program

        Returns:
            ``{"valid": True}`` when no program is active or it matches,
            otherwise ``{"valid": False, "error": ...}``
        """
        active = self.get_active_program(session_id)
        if active is None or active == program_id:
            return {"valid": True}
        return {
            "valid": False,
            "error": (
                f"Program context mismatch: active program is {active}, "
                f"but operation requested for {program_id}"
            ),
        }

    def switch_program(
        self,
        new_program_id: str,
        program_name: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: str = DEFAULT_SESSION_ID,
    ) -> ProgramContext:
        previous = self.get_active_program(session_id)
        if previous:
            LOGGER.info("Switching from %s to %s (session: %s)", previous, new_program_id, session_id)
        return self.set_active_program(new_program_id, program_name, user_id, session_id)

    def get_stats(self) -> Dict[str, int]:
        contexts = self.store.values()
        return {
            "active_sessions": len(contexts),
            "unique_programs": len({context.program_id for context in contexts}),
            "total_users": len(self._access),
        }

    def clear(self) -> None:
        self.store.clear()
        self._access.clear()
