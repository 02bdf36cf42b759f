"""Persisted role selection for the terminal client."""

import logging
from enum import Enum
from typing import Optional

from .config import Config

logger = logging.getLogger(__name__)

ROLE_KEY = "role"


class Role(str, Enum):
    CITIZEN = "citizen"
    RESPONDER = "responder"


class SessionStore:
    """
    The active role, read from the client config on load and cleared on logout.

    Every command runs in its own process and releases its own subscriptions
    when it exits, so logging out only has to forget the stored role.
    """

    def __init__(self, config: Config):
        self.config = config
        self.role: Optional[Role] = self._read_role()

    def _read_role(self) -> Optional[Role]:
        value = self.config.get(ROLE_KEY)
        if value is None:
            return None
        try:
            return Role(value)
        except ValueError:
            logger.warning(f"Ignoring unknown stored role '{value}'")
            return None

    def login(self, role: Role) -> Role:
        """Persist the selected role, replacing any other."""
        if self.role is not None and self.role != role:
            logger.info(f"Switching role from {self.role.value} to {role.value}")
        self.config.set(ROLE_KEY, role.value)
        self.role = role
        return role

    def logout(self) -> Optional[Role]:
        """Clear the stored role and return the one that was active."""
        previous = self.role
        self.config.delete(ROLE_KEY)
        self.role = None
        return previous
