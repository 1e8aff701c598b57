"""
Qt signal bridge for session changes.

Republishes SessionManager notifications as Qt signals so widgets can react to
login, logout and token refresh without knowing about asyncio.
"""

import logging
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal

from client.auth.session_manager import SessionManager
from shared.models import AuthState, Session

logger = logging.getLogger(__name__)


class SessionSignals(QObject):
    """
    Qt-facing view of a SessionManager.

    Emits session_changed for every snapshot and the narrower signals only
    when the corresponding part of the session actually changed.
    """

    session_changed = pyqtSignal(object)  # Session
    auth_state_changed = pyqtSignal(AuthState)
    authentication_changed = pyqtSignal(bool)
    user_changed = pyqtSignal(object)  # Optional[User]

    def __init__(self, session_manager: SessionManager, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._session_manager = session_manager
        self._last_session = session_manager.session

        session_manager.add_session_callback(self._on_session_changed)

    @property
    def session(self) -> Session:
        return self._last_session

    def _on_session_changed(self, session: Session) -> None:
        previous = self._last_session
        self._last_session = session

        self.session_changed.emit(session)

        if session.auth_state != previous.auth_state:
            logger.debug(f"Auth state {previous.auth_state.value} -> {session.auth_state.value}")
            self.auth_state_changed.emit(session.auth_state)

        if session.is_authenticated != previous.is_authenticated:
            self.authentication_changed.emit(session.is_authenticated)

        if session.user != previous.user:
            self.user_changed.emit(session.user)

    def disconnect_session(self) -> None:
        """Stop listening to the session manager."""
        self._session_manager.remove_session_callback(self._on_session_changed)
