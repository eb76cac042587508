"""
Session pool for the authenticated backend.

Features:
- Discovery of Telethon session files in a sessions directory
- Live validation (connect + authorization check) at startup
- Uniform random selection to spread load across accounts
- Permanent eviction of sessions that fail to connect or authorize

Sessions are created by a separate one-shot authorization tool; nothing
here ever tries to repair or re-authorize a session.
"""

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from telethon import TelegramClient

from .errors import NoSessionsError

logger = logging.getLogger(__name__)


SESSION_SUFFIX = ".session"


@dataclass(frozen=True)
class SessionFile:
    """One on-disk credential bundle, identified by its filename."""
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    def __str__(self) -> str:
        return str(self.path)


@dataclass
class SessionValidationResult:
    """Outcome of validating every discovered session."""
    valid: List[SessionFile] = field(default_factory=list)
    invalid: List[SessionFile] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return bool(self.valid)

    def error_message(self) -> Optional[str]:
        """Operator-facing explanation when no session is usable."""
        if self.valid:
            return None
        if not self.invalid:
            return (
                "No session files found.\n\n"
                "To create sessions:\n"
                "1. Run the authorization tool to create a new session\n"
                "2. Place session files in the sessions directory"
            )
        listing = "\n".join(f"  - {s}" for s in self.invalid)
        return (
            f"All {len(self.invalid)} session files are invalid or unauthorized.\n\n"
            f"Invalid sessions:\n{listing}\n\n"
            "To fix:\n"
            "1. Delete invalid session files\n"
            "2. Run the authorization tool to create new sessions\n"
            "3. Ensure sessions are properly authorized"
        )

    def success_message(self) -> Optional[str]:
        if not self.valid:
            return None
        message = f"Session validation successful! {len(self.valid)} valid session(s) found."
        if self.invalid:
            message += f"\n{len(self.invalid)} invalid session(s) will be ignored."
        return message


class SessionPool:
    """
    Candidate sessions, a random selection strategy and an eviction list.

    Usage:
        pool = SessionPool("./sessions", api_id=ID, api_hash=HASH)
        pool.discover()
        result = await pool.validate_all()
        session = pool.pick()
    """

    def __init__(
        self,
        sessions_dir: Path,
        api_id: int,
        api_hash: str,
        suffix: str = SESSION_SUFFIX,
        client_factory: Callable[..., Any] = TelegramClient,
        rng: Optional[random.Random] = None
    ):
        self.sessions_dir = Path(sessions_dir)
        self.api_id = api_id
        self.api_hash = api_hash
        self.suffix = suffix
        self._client_factory = client_factory
        self._rng = rng or random.Random()

        self._candidates: Set[SessionFile] = set()
        self._evicted: Dict[SessionFile, str] = {}

    def discover(self) -> Set[SessionFile]:
        """
        Scan the sessions directory for session files.

        Raises:
            NoSessionsError: directory missing or holding no session file
        """
        if not self.sessions_dir.is_dir():
            raise NoSessionsError(f"{self.sessions_dir}/ directory does not exist")

        found = {
            SessionFile(path)
            for path in self.sessions_dir.iterdir()
            if path.is_file() and path.name.endswith(self.suffix)
        }

        if not found:
            raise NoSessionsError(f"No *{self.suffix} files found in {self.sessions_dir}/")

        self._candidates = found
        logger.info(f"Discovered {len(found)} session file(s) in {self.sessions_dir}")
        return set(found)

    async def validate(self, session: SessionFile) -> bool:
        """
        Connect with ``session`` and check that it is authorized.

        Returns False (and logs why) on any load, connect or authorization
        problem. The client is always disconnected afterwards.
        """
        client = None
        try:
            client = self._client_factory(str(session.path), self.api_id, self.api_hash)
            await client.connect()
            if not await client.is_user_authorized():
                logger.warning(f"Session {session.name} loaded but not authorized")
                return False
            return True
        except Exception as e:
            logger.warning(f"Failed to validate session {session.name}: {e}")
            return False
        finally:
            if client is not None:
                await client.disconnect()

    async def validate_all(self) -> SessionValidationResult:
        """Validate every discovered session, evicting the ones that fail."""
        if not self._candidates:
            self.discover()

        result = SessionValidationResult()
        logger.info(f"Validating {len(self._candidates)} session files...")

        for session in sorted(self._candidates, key=lambda s: s.name):
            if await self.validate(session):
                logger.info(f"Session valid: {session.name}")
                result.valid.append(session)
            else:
                logger.warning(f"Session invalid/unauthorized: {session.name}")
                result.invalid.append(session)
                self.evict(session, "failed validation")

        return result

    def pick(self) -> SessionFile:
        """
        Pick a session uniformly at random among non-evicted candidates.

        Raises:
            NoSessionsError: every session has been evicted
        """
        available = self.available
        if not available:
            raise NoSessionsError("No usable sessions left (all evicted)")
        return self._rng.choice(available)

    def evict(self, session: SessionFile, reason: str) -> None:
        """Drop ``session`` for the rest of the process lifetime."""
        if session in self._evicted:
            return
        self._evicted[session] = reason
        logger.warning(f"Session evicted: {session.name} ({reason})")

    def add(self, session: SessionFile) -> None:
        """Register a session file without scanning the directory."""
        self._candidates.add(session)

    @property
    def available(self) -> List[SessionFile]:
        return sorted(
            (s for s in self._candidates if s not in self._evicted),
            key=lambda s: s.name
        )

    @property
    def evicted(self) -> Dict[SessionFile, str]:
        return dict(self._evicted)

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        return {
            "total": len(self._candidates),
            "available": len(self.available),
            "evicted": len(self._evicted),
            "evicted_sessions": {s.name: reason for s, reason in self._evicted.items()},
        }
