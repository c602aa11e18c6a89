import uuid
from typing import Dict, Optional

import structlog

from ..models import Identity, Role

log = structlog.get_logger()


class SessionService:
    """
    Mocked identity provider. Login always succeeds with a fresh identity and
    no role, which forces the caller through profile completion first.
    Sessions live in memory only.
    """

    def __init__(self):
        self._sessions: Dict[str, Identity] = {}

    def login(self, name="João Silva"):
        session_id = uuid.uuid4().hex
        identity = Identity(id=uuid.uuid4().hex[:7], name=name)
        self._sessions[session_id] = identity
        log.info("session_started", identity=identity.id)
        return session_id, identity

    def complete_profile(self, session_id, role, details=None) -> Optional[Identity]:
        identity = self._sessions.get(session_id)
        if identity is None:
            return None
        identity = identity.model_copy(update={"role": Role(role), "details": dict(details or {})})
        self._sessions[session_id] = identity
        log.info("profile_completed", identity=identity.id, role=identity.role.value)
        return identity

    def logout(self, session_id):
        identity = self._sessions.pop(session_id, None)
        if identity is not None:
            log.info("session_ended", identity=identity.id)

    def get(self, session_id) -> Optional[Identity]:
        if not session_id:
            return None
        return self._sessions.get(session_id)
