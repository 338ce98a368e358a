"""Host transport boundary and per-session tool visibility."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from sardis_paygate.models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolListChanged:
    """Discrete notification that a session's advertised tool set changed."""
    session_id: str
    version: int
    hidden: frozenset[str]
    exposed: frozenset[str]


@runtime_checkable
class ToolHost(Protocol):
    """What the gate needs from the hosting tool server."""

    async def notify_tool_list_changed(self, event: ToolListChanged) -> None:
        """Tell the session's client to re-fetch its tool list."""
        ...


@dataclass
class _SessionView:
    version: int = 0
    hidden: Counter = field(default_factory=Counter)
    exposed: Counter = field(default_factory=Counter)


@dataclass(frozen=True)
class _Hold:
    session_id: str
    tool_name: str
    expose: str
    expires_at: Optional[datetime] = None


class ToolVisibility:
    """Versioned per-session overrides of the advertised tool set.

    Hiding is reference counted so two pending payments for the same
    tool in one session only restore visibility once both are done.
    Visibility only affects listing: a hidden tool stays callable.

    A hide tied to a payment id is held until ``release`` or, once its
    ``expires_at`` passes, ``expire``.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, _SessionView] = {}
        self._holds: dict[str, _Hold] = {}

    def _view(self, session_id: str) -> _SessionView:
        view = self._sessions.get(session_id)
        if view is None:
            view = self._sessions[session_id] = _SessionView()
        return view

    def _event(self, session_id: str, view: _SessionView) -> ToolListChanged:
        view.version += 1
        return ToolListChanged(
            session_id=session_id,
            version=view.version,
            hidden=frozenset(k for k, v in view.hidden.items() if v > 0),
            exposed=frozenset(k for k, v in view.exposed.items() if v > 0),
        )

    def hide(
        self,
        session_id: str,
        tool_name: str,
        expose: str,
        payment_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> ToolListChanged:
        """Hide ``tool_name`` and expose ``expose`` for one session."""
        if payment_id is not None:
            self._holds[payment_id] = _Hold(session_id, tool_name, expose, expires_at)
        view = self._view(session_id)
        view.hidden[tool_name] += 1
        view.exposed[expose] += 1
        return self._event(session_id, view)

    def restore(self, session_id: str, tool_name: str, expose: str) -> Optional[ToolListChanged]:
        """Undo one ``hide`` call. Returns None if nothing was hidden."""
        view = self._sessions.get(session_id)
        if view is None or view.hidden[tool_name] <= 0:
            return None
        view.hidden[tool_name] -= 1
        if view.exposed[expose] > 0:
            view.exposed[expose] -= 1
        return self._event(session_id, view)

    def release(self, payment_id: str) -> Optional[ToolListChanged]:
        """Undo the hide held by ``payment_id``. Returns None if there is none."""
        hold = self._holds.pop(payment_id, None)
        if hold is None:
            return None
        return self.restore(hold.session_id, hold.tool_name, hold.expose)

    def expire(self, now: Optional[datetime] = None) -> list[ToolListChanged]:
        """Release every hold whose payment has lapsed."""
        now = now or utcnow()
        lapsed = [
            payment_id for payment_id, hold in self._holds.items()
            if hold.expires_at is not None and hold.expires_at <= now
        ]
        events = []
        for payment_id in lapsed:
            event = self.release(payment_id)
            if event is not None:
                logger.info(f"Visibility hold for {payment_id} lapsed; restored session {event.session_id}")
                events.append(event)
        return events

    def holds(self, payment_id: str) -> bool:
        return payment_id in self._holds

    def is_hidden(self, session_id: str, tool_name: str) -> bool:
        view = self._sessions.get(session_id)
        return view is not None and view.hidden[tool_name] > 0

    def is_exposed(self, session_id: str, tool_name: str) -> bool:
        view = self._sessions.get(session_id)
        return view is not None and view.exposed[tool_name] > 0

    def version(self, session_id: str) -> int:
        view = self._sessions.get(session_id)
        return view.version if view else 0


async def emit_tool_list_changed(host: Optional[ToolHost], event: Optional[ToolListChanged]) -> None:
    """Forward a visibility change to the host, if there is one."""
    if event is None:
        return
    if host is None:
        logger.debug(f"No host attached; dropping tool list change v{event.version}")
        return
    await host.notify_tool_list_changed(event)
