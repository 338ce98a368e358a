"""Caller context passed by the host with every tool call."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional


ELICITATION_ACCEPT = "accept"
ELICITATION_DECLINE = "decline"
ELICITATION_CANCEL = "cancel"


@dataclass
class ElicitationResult:
    """Caller's reply to an in-call payment solicitation."""
    action: str
    content: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.action == ELICITATION_ACCEPT


ElicitFn = Callable[[str, dict[str, Any]], Awaitable[ElicitationResult]]
ProgressFn = Callable[[float, Optional[float], Optional[str]], Awaitable[None]]


@dataclass
class CallerContext:
    """Identity, capabilities and side channels of the calling client.

    ``capabilities`` holds what the client advertised during its
    handshake (``x402``, ``elicitation``, ``progress``,
    ``tools_list_changed``). ``elicit`` and ``report_progress`` are the
    host's bindings for the in-call request/response and progress
    notification channels; they are None when the transport lacks them.
    """
    caller_id: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    capabilities: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    elicit: Optional[ElicitFn] = None
    report_progress: Optional[ProgressFn] = None
    timeout: Optional[float] = None

    def supports(self, capability: str) -> bool:
        return bool(self.capabilities.get(capability))

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def session_key(self) -> str:
        return self.session_id or self.caller_id or "anonymous"

    def snapshot(self) -> dict[str, Any]:
        """Serializable identity captured on the pending invocation."""
        return {
            "caller_id": self.caller_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
        }
