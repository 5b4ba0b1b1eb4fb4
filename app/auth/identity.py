from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

USER_TYPES = ("adult", "child", "guardian")

_DASHBOARDS = {
    "child": "/child-dashboard",
    "adult": "/adult-dashboard",
    "guardian": "/guardian-dashboard",
}

# Identity served to local development when nothing better is available
MOCK_USER_ID = "local-user-123"
MOCK_USER: Dict[str, Any] = {
    "id": MOCK_USER_ID,
    "email": "developer@local.dev",
    "firstName": "Local",
    "lastName": "Developer",
    "profileImageUrl": "https://via.placeholder.com/150",
    "userType": "adult",
    "language": "english",
}


def dashboard_url(user_type: Optional[str]) -> str:
    return _DASHBOARDS.get(user_type or "", "/")


def mock_user() -> Dict[str, Any]:
    ts = datetime.now(timezone.utc).isoformat()
    return dict(MOCK_USER, createdAt=ts, updatedAt=ts)


@dataclass
class Principal:
    """Caller identity resolved for one request.

    ``source`` is where it came from: ``session`` (login principal set by the
    mock or OIDC login), ``dev_session`` (set by local email/password login)
    or ``bearer`` (Authorization header looked up in the credential store).
    ``record`` is the session-side dict for session sources; ``user`` is the
    stored identity when one was looked up.
    """

    id: str
    source: str
    record: Dict[str, Any] = field(default_factory=dict)
    user: Optional[Dict[str, Any]] = None

    @property
    def claims(self) -> Dict[str, Any]:
        return self.record.get("claims") or {"sub": self.id}

    @classmethod
    def from_session_record(cls, record: Dict[str, Any], source: str) -> Optional["Principal"]:
        user_id = (record.get("claims") or {}).get("sub") or record.get("id")
        if not user_id:
            return None
        return cls(id=str(user_id), source=source, record=record)
