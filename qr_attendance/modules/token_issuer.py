"""
Token Issuer Module - QR Attendance Session Core

This module issues the rotating tokens a presenter displays as QR codes.
Each token is an unguessable random string scoped to one session, valid
for a few seconds and redeemable once.

Features:
- Cryptographically random single-use tokens
- Short absolute expiry per token
- Purge of expired tokens (advisory housekeeping)
- Fixed-interval asyncio rotation while a session is active
"""

import asyncio
import inspect
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from qr_attendance.modules.errors import StorageError, ValidationError
from qr_attendance.modules.models import to_db_timestamp, utc_now

TokenCallback = Callable[[str], Union[None, Awaitable[None]]]


class TokenIssuer:
    """
    Issues rotating tokens for sessions and reaps expired ones.

    Redemption re-checks expiry and the used flag itself, so nothing here
    has to run for tokens to be validated correctly.
    """

    def __init__(self, database_manager, lifetime_seconds: float = 5,
                 entropy_bytes: int = 32, clock: Callable[[], datetime] = utc_now):
        """
        Initialize the token issuer.

        Args:
            database_manager: Database manager instance
            lifetime_seconds (float): Seconds a token stays redeemable
            entropy_bytes (int): Random bytes per token, at least 32
            clock: Callable returning the current aware UTC datetime
        """
        if entropy_bytes < 32:
            raise ValueError('Tokens need at least 32 bytes of entropy')
        self.db = database_manager
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self.entropy_bytes = entropy_bytes
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def _generate_token(self) -> str:
        return secrets.token_hex(self.entropy_bytes)

    async def issue_token(self, session_id) -> Optional[str]:
        """
        Generate and store a new rotating token for a session.

        Args:
            session_id: Session the token belongs to

        Returns:
            str: The token value, or None if it could not be stored (retryable)

        Raises:
            ValidationError: If session_id is empty
        """
        if session_id is None or str(session_id).strip() == '':
            raise ValidationError('Session ID is required')

        token = self._generate_token()
        expires_at = self.clock() + self.lifetime

        try:
            await self.db.execute(
                """INSERT INTO qr_tokens (session_id, token, expires_at, is_used)
                   VALUES (?, ?, ?, 0)""",
                (session_id, token, to_db_timestamp(expires_at))
            )
        except StorageError as e:
            self.logger.error(f"Error generating rotating token for session {session_id}: {str(e)}")
            return None

        self.logger.debug(f"Issued token {token[:8]}... for session {session_id}")
        return token

    async def purge_expired(self) -> int:
        """
        Delete every token whose expiry has passed, used or not.

        Returns:
            int: Number of tokens deleted; 0 when the store was unavailable
        """
        try:
            deleted = await self.db.execute(
                "DELETE FROM qr_tokens WHERE expires_at < ?",
                (to_db_timestamp(self.clock()),)
            )
        except StorageError as e:
            self.logger.warning(f"Skipping expired token cleanup: {str(e)}")
            return 0

        if deleted:
            self.logger.debug(f"Purged {deleted} expired tokens")
        return deleted


class TokenRotator:
    """
    Issues a fresh token on a fixed interval while a session is running.

    Each rotation stops on its own once the session is ended or its end
    time passes, and can be cancelled at any time with stop().
    """

    def __init__(self, issuer: TokenIssuer, session_manager,
                 interval_seconds: float = 5, purge: bool = True):
        self.issuer = issuer
        self.session_manager = session_manager
        self.interval_seconds = interval_seconds
        self.purge = purge
        self.logger = logging.getLogger(__name__)
        self._tasks: Dict[Any, asyncio.Task] = {}

    def start(self, session_id, on_token: TokenCallback) -> asyncio.Task:
        """
        Start rotating tokens for a session on the running event loop.

        Args:
            session_id: Session to rotate tokens for
            on_token: Called with every new token; may be a coroutine function

        Returns:
            asyncio.Task: The rotation task
        """
        self.stop(session_id)
        task = asyncio.get_running_loop().create_task(self.run(session_id, on_token))
        self._tasks[session_id] = task
        task.add_done_callback(lambda _: self._forget(session_id, task))
        return task

    def _forget(self, session_id, task):
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]

    def stop(self, session_id) -> bool:
        task = self._tasks.pop(session_id, None)
        if task is None:
            return False
        task.cancel()
        self.logger.info(f"Token rotation stopped for session {session_id}")
        return True

    def stop_all(self):
        for session_id in list(self._tasks):
            self.stop(session_id)

    def is_running(self, session_id) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def run(self, session_id, on_token: TokenCallback) -> int:
        """
        Rotate tokens until the session stops being claimable.

        Returns:
            int: Number of tokens handed to on_token
        """
        issued = 0
        self.logger.info(f"Token rotation started for session {session_id}")

        while True:
            session = await self.session_manager.get_session(session_id)
            if session is None or not self.session_manager.is_claimable(session):
                self.logger.info(f"Session {session_id} is no longer active, rotation finished")
                return issued

            token = await self.issuer.issue_token(session_id)
            if token is not None:
                issued += 1
                try:
                    result = on_token(token)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    # Rotation continues past a failing callback
                    self.logger.error(f"Token callback failed for session {session_id}: {str(e)}")

            if self.purge:
                await self.issuer.purge_expired()

            await asyncio.sleep(self.interval_seconds)
