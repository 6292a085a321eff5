# shiftdesk/core/passwords.py
"""
Temporary password generation for new worker accounts.

Passwords come from the OS CSPRNG (``secrets``).  If the platform has no
such source the generator still produces a password, but from
``random.Random`` and flagged ``degraded`` so callers can log and alert on it.
"""
from __future__ import annotations

import random
import secrets
import string
import warnings
from dataclasses import dataclass

from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

PASSWORD_LENGTH = 16
PASSWORD_CHARSET = string.ascii_lowercase + string.ascii_uppercase + string.digits + "!@#$%^&*"


class WeakRandomnessWarning(RuntimeWarning):
    """A password was produced without a cryptographically strong source."""


@dataclass(frozen=True)
class GeneratedPassword:
    value: str
    degraded: bool = False

    def __repr__(self) -> str:
        return f"GeneratedPassword(value='***', degraded={self.degraded})"


def _strong_choice(length: int) -> str:
    return "".join(secrets.choice(PASSWORD_CHARSET) for _ in range(length))


def generate_password(length: int = PASSWORD_LENGTH) -> GeneratedPassword:
    try:
        return GeneratedPassword(_strong_choice(length))
    except NotImplementedError:
        # os.urandom has no backing source on this platform
        msg = "No cryptographically strong random source available; password generated with random.Random"
        logger.warning(msg)
        warnings.warn(msg, WeakRandomnessWarning, stacklevel=2)
        rng = random.Random()
        value = "".join(rng.choice(PASSWORD_CHARSET) for _ in range(length))
        return GeneratedPassword(value, degraded=True)
