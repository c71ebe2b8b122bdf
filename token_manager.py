import json
import logging
import os
from datetime import datetime
from typing import Optional

from session_store import SessionStore


class NotAuthenticatedError(Exception):
    """Raised when no access token is available."""

    def __init__(self, message: str = "Not logged in"):
        super().__init__(message)


class TokenManager:
    """Stores the viewer's backend access token and resets the session on logout"""

    def __init__(self, token_file: str, session_store: Optional[SessionStore] = None):
        """
        Initialize TokenManager

        Args:
            token_file: JSON file holding the access token
            session_store: Session state cleared on logout
        """
        self.token_file = os.path.expanduser(token_file)
        self.session_store = session_store

    def _read(self) -> dict:
        try:
            with open(self.token_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logging.warning(f"Unreadable token file {self.token_file}: {e}")
            return {}

    def peek(self) -> Optional[str]:
        """Return the stored token, or None"""
        token = self._read().get('access_token')
        return token if isinstance(token, str) and token else None

    def get_token(self) -> str:
        """
        Return the stored access token

        Raises:
            NotAuthenticatedError: when no token is stored
        """
        token = self.peek()
        if not token:
            raise NotAuthenticatedError()
        return token

    def login(self, access_token: str) -> None:
        """Persist an access token obtained from the identity provider"""
        if not access_token:
            raise ValueError("access_token must be non-empty")

        directory = os.path.dirname(self.token_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.token_file}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump({'access_token': access_token, 'stored_at': datetime.now().isoformat()}, f)
        os.replace(tmp_path, self.token_file)
        os.chmod(self.token_file, 0o600)
        logging.info("Access token stored")

    async def logout(self) -> None:
        """Remove the stored token and reset all session ingestion state"""
        try:
            os.remove(self.token_file)
            logging.info("Access token removed")
        except FileNotFoundError:
            pass

        if self.session_store is not None:
            await self.session_store.clear()


class StaticTokenProvider:
    """Credential provider around a fixed token (or none)"""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    def peek(self) -> Optional[str]:
        return self.token

    def get_token(self) -> str:
        if not self.token:
            raise NotAuthenticatedError()
        return self.token
