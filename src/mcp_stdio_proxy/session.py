"""Session token carried between the proxy and the upstream server."""

import logging
import typing as t

logger = logging.getLogger(__name__)

MCP_SESSION_ID: t.Final[str] = "Mcp-Session-Id"


class SessionState:
    """Holds the upstream session id.

    The first id seen in a response is adopted and kept for the lifetime of the
    process. Ids announced by later responses are ignored. Only the sequential relay
    loop touches this object, so no locking is done.
    """

    def __init__(self) -> None:
        self._session_id = ""

    @property
    def session_id(self) -> str:
        return self._session_id

    def adopt(self, session_id: str | None) -> bool:
        """Adopt ``session_id`` if none is held yet. Returns True when adopted."""
        if not session_id:
            return False
        if self._session_id:
            if session_id != self._session_id:
                logger.debug(
                    "Ignoring session id %s; keeping established session %s",
                    session_id,
                    self._session_id,
                )
            return False
        self._session_id = session_id
        logger.info("Established session id: %s", session_id)
        return True

    def apply(self, headers: dict[str, str]) -> None:
        """Add the session header to an outgoing request's headers, if a session exists."""
        if self._session_id:
            headers[MCP_SESSION_ID] = self._session_id
