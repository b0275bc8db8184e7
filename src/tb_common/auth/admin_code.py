"""One-shot admin bootstrap code.

When no admin exists at startup, a code is generated and a login link that
carries it is logged. The first login presenting the code before it expires
is granted admin. The code is single use.
"""

import asyncio
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

ADMIN_CODE_VALIDITY_SECONDS = 60
_CHARSET = string.ascii_letters + string.digits
_CODE_LENGTH = 32


@dataclass
class _AdminCode:
    code: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class AdminCodeService:
    def __init__(self, validity_seconds: int = ADMIN_CODE_VALIDITY_SECONDS):
        self._validity = timedelta(seconds=validity_seconds)
        self._code: _AdminCode | None = None
        self._lock = asyncio.Lock()

    async def generate(self) -> str:
        """Create a new code, replacing any previous one."""
        code = "".join(secrets.choice(_CHARSET) for _ in range(_CODE_LENGTH))
        async with self._lock:
            self._code = _AdminCode(
                code=code, expires_at=datetime.now(timezone.utc) + self._validity
            )
        return code

    async def validate_and_consume(self, code: str) -> bool:
        """Return True and clear the stored code if it matches and is unexpired.

        An expired code is cleared on check. A mismatch leaves a live code in place.
        """
        async with self._lock:
            current = self._code
            if current is None:
                return False
            if current.is_expired(datetime.now(timezone.utc)):
                self._code = None
                return False
            if not secrets.compare_digest(current.code, code):
                return False
            self._code = None
            return True

    async def has_code(self) -> bool:
        async with self._lock:
            return self._code is not None


_service: AdminCodeService | None = None


def get_admin_code_service() -> AdminCodeService:
    global _service
    if _service is None:
        _service = AdminCodeService()
    return _service
