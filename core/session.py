"""Session provider interface and an environment-backed implementation."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    user_id: str
    access_token: Optional[str] = None


class SessionProvider(ABC):
    @abstractmethod
    def get_session(self) -> Optional[Session]:
        """Return the active session, or None when signed out."""


class EnvSessionProvider(SessionProvider):
    """Reads the user id and access token from environment variables on each call."""

    def __init__(self, user_id_env: str = "AUTOEXIT_USER_ID",
                 token_env: str = "AUTOEXIT_ACCESS_TOKEN"):
        self.user_id_env = user_id_env
        self.token_env = token_env

    def get_session(self) -> Optional[Session]:
        user_id = os.getenv(self.user_id_env, "").strip()
        if not user_id:
            return None
        return Session(user_id=user_id, access_token=os.getenv(self.token_env) or None)
