# mcp_bridge/sessions/session_store.py
import asyncio
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from ..settings import Settings
from ..utils.security import SessionTokenCipher, mask_token
from .session_data import MCPSession, as_utc, utc_now

logger = logging.getLogger(__name__)


class AbstractSessionStore(ABC):
    """
    Interface for MCP session storage.

    Implementations must never hand out a session whose expires_at has
    passed, regardless of whether a sweep has run yet.
    """

    @abstractmethod
    async def set(
        self,
        mcp_session_id: str,
        auth_session_token: str,
        user_id: Optional[str],
        expires_at: datetime,
    ) -> None:
        """Insert or overwrite the session stored under mcp_session_id."""
        pass

    @abstractmethod
    async def get(self, mcp_session_id: str) -> Optional[MCPSession]:
        """Return the session if present and unexpired, else None."""
        pass

    @abstractmethod
    async def delete(self, mcp_session_id: str) -> None:
        """Remove the session. Deleting an unknown id is not an error."""
        pass

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Remove expired sessions and return how many were removed."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def teardown(self) -> None:
        pass

    async def ping(self) -> bool:
        return True


class InMemorySessionStore(AbstractSessionStore):
    """
    Process-local session store.

    All reads and writes go through one asyncio.Lock so a concurrent set and
    get for the same id never observe a partial update. A background task
    sweeps expired entries every sweep_interval_seconds.
    """

    def __init__(self, sweep_interval_seconds: int = 300):
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sessions: Dict[str, MCPSession] = {}
        self._lock = asyncio.Lock()
        self._sweeper_task: Optional[asyncio.Task] = None
        logger.info(
            f"InMemorySessionStore initialized. Sweep interval: {self.sweep_interval_seconds}s"
        )

    def __len__(self) -> int:
        return len(self._sessions)

    async def set(
        self,
        mcp_session_id: str,
        auth_session_token: str,
        user_id: Optional[str],
        expires_at: datetime,
    ) -> None:
        now = utc_now()
        expires_at = as_utc(expires_at)
        async with self._lock:
            if expires_at <= now:
                # An already-expired write leaves nothing readable under this id.
                self._sessions.pop(mcp_session_id, None)
                logger.debug(f"Dropped already-expired session write for '{mask_token(mcp_session_id)}'.")
                return
            self._sessions[mcp_session_id] = MCPSession(
                mcp_session_id=mcp_session_id,
                auth_session_token=auth_session_token,
                user_id=user_id,
                created_at=now,
                expires_at=expires_at,
            )
        logger.debug(
            f"Stored session '{mask_token(mcp_session_id)}' for user '{user_id}' "
            f"(token {mask_token(auth_session_token)}), expires {expires_at.isoformat()}"
        )

    async def get(self, mcp_session_id: str) -> Optional[MCPSession]:
        async with self._lock:
            session = self._sessions.get(mcp_session_id)
            if session is None:
                return None
            if session.is_expired():
                del self._sessions[mcp_session_id]
                logger.info(f"Session '{mask_token(mcp_session_id)}' expired at read time; removed.")
                return None
            return session.model_copy()

    async def delete(self, mcp_session_id: str) -> None:
        async with self._lock:
            removed = self._sessions.pop(mcp_session_id, None)
        if removed is not None:
            logger.info(f"Session '{mask_token(mcp_session_id)}' deleted.")

    async def sweep_expired(self) -> int:
        async with self._lock:
            snapshot = list(self._sessions.items())

        now = utc_now()
        expired_ids = [sid for sid, session in snapshot if session.is_expired(now)]

        removed = 0
        for sid in expired_ids:
            async with self._lock:
                # Re-check: the entry may have been refreshed since the snapshot.
                current = self._sessions.get(sid)
                if current is not None and current.is_expired(now):
                    del self._sessions[sid]
                    removed += 1
        if removed:
            logger.info(f"Session sweep removed {removed} expired session(s).")
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_expired()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True)

    async def initialize(self) -> None:
        if self._sweeper_task is not None and not self._sweeper_task.done():
            logger.warning("Session sweeper already running. Skipping re-initialization.")
            return
        self._sweeper_task = asyncio.create_task(self._sweep_loop(), name="mcp-session-sweeper")
        logger.info("Session sweeper started.")

    async def teardown(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None
        logger.info("Session sweeper stopped.")


class RedisSessionStore(AbstractSessionStore):
    """
    Redis-backed session store.

    Each entry carries a TTL equal to its remaining lifetime, so Redis does
    the sweeping. Expiry is still checked on read. Backend tokens are
    encrypted at rest when a cipher key is configured.
    """

    KEY_PREFIX = "mcp_bridge:session:"

    def __init__(
        self,
        settings: Settings,
        cipher: Optional[SessionTokenCipher] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        self._settings = settings
        self._cipher = cipher or SessionTokenCipher(settings.session_encryption_key)
        self._redis_client: Optional[aioredis.Redis] = client
        logger.info(
            f"RedisSessionStore created. Encryption: {'on' if self._cipher.enabled else 'off'}"
        )

    def _key(self, mcp_session_id: str) -> str:
        if not mcp_session_id:
            raise ValueError("mcp_session_id is required to construct a session key.")
        return f"{self.KEY_PREFIX}{mcp_session_id}"

    async def initialize(self) -> None:
        if self._redis_client is None:
            connection_params = {
                "host": self._settings.redis_host,
                "port": self._settings.redis_port,
                "db": self._settings.redis_db,
                "decode_responses": False,
            }
            if self._settings.redis_password:
                connection_params["password"] = self._settings.redis_password
            logger.info(
                f"Connecting to Redis at {connection_params['host']}:"
                f"{connection_params['port']}, DB: {connection_params['db']}"
            )
            self._redis_client = aioredis.Redis(**connection_params)

        try:
            await self._redis_client.ping()
            logger.info("Successfully connected to Redis and pinged.")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            self._redis_client = None
            raise

    async def teardown(self) -> None:
        if self._redis_client is not None:
            logger.info("Closing Redis connection.")
            await self._redis_client.aclose()
            self._redis_client = None

    def _get_client(self) -> aioredis.Redis:
        if self._redis_client is None:
            raise RuntimeError("RedisSessionStore not initialized. Call initialize() first.")
        return self._redis_client

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def set(
        self,
        mcp_session_id: str,
        auth_session_token: str,
        user_id: Optional[str],
        expires_at: datetime,
    ) -> None:
        client = self._get_client()
        key = self._key(mcp_session_id)
        now = utc_now()
        expires_at = as_utc(expires_at)
        ttl_seconds = math.ceil((expires_at - now).total_seconds())
        if ttl_seconds <= 0:
            await client.delete(key)
            logger.debug(f"Dropped already-expired session write for '{mask_token(mcp_session_id)}'.")
            return

        record = MCPSession(
            mcp_session_id=mcp_session_id,
            auth_session_token=self._cipher.encrypt(auth_session_token),
            user_id=user_id,
            created_at=now,
            expires_at=expires_at,
        )
        try:
            await client.set(key, record.model_dump_json().encode("utf-8"), ex=ttl_seconds)
        except Exception as e:
            logger.error(f"Error saving session '{mask_token(mcp_session_id)}': {e}", exc_info=True)
            raise
        logger.debug(f"Saved session '{mask_token(mcp_session_id)}', TTL: {ttl_seconds}s")

    async def get(self, mcp_session_id: str) -> Optional[MCPSession]:
        client = self._get_client()
        key = self._key(mcp_session_id)
        try:
            raw = await client.get(key)
        except Exception as e:
            logger.error(f"Error loading session '{mask_token(mcp_session_id)}': {e}", exc_info=True)
            return None
        if not raw:
            return None

        try:
            record = MCPSession.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding undecodable session '{mask_token(mcp_session_id)}': {e}")
            await client.delete(key)
            return None

        if record.is_expired():
            await client.delete(key)
            logger.info(f"Session '{mask_token(mcp_session_id)}' expired at read time; removed.")
            return None

        token = self._cipher.decrypt(record.auth_session_token)
        if token is None:
            await client.delete(key)
            return None
        return record.model_copy(update={"auth_session_token": token})

    async def delete(self, mcp_session_id: str) -> None:
        client = self._get_client()
        deleted_count = await client.delete(self._key(mcp_session_id))
        if deleted_count:
            logger.info(f"Session '{mask_token(mcp_session_id)}' deleted.")

    async def sweep_expired(self) -> int:
        # Entries carry a TTL, so Redis has already evicted expired sessions.
        return 0


def create_session_store(settings: Settings) -> AbstractSessionStore:
    """Builds the session store selected by SESSION_STORE_BACKEND."""
    backend = settings.session_store_backend.lower()
    if backend == "memory":
        return InMemorySessionStore(sweep_interval_seconds=settings.session_sweep_interval_seconds)
    if backend == "redis":
        return RedisSessionStore(settings)
    raise ValueError(f"Unsupported session_store_backend: {settings.session_store_backend}")
