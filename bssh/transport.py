"""
Transport session

Owns one authenticated SSH connection. Channels are opened on it through the
multiplexer in ``bssh.channels``; none may be opened before authentication
succeeds, and after any transport-level failure the session is invalid and
must be replaced by a new ``connect``.
"""

import asyncio
import logging
import os
import time
from typing import Optional

import paramiko

from .config import AppConfig
from .errors import AuthError, TransportError
from .models.connection import ConnectionParams, ConnectionStatus
from .utils import run_blocking

logger = logging.getLogger(__name__)


class AcceptAnyHostKeyPolicy(paramiko.MissingHostKeyPolicy):
    """Trusts every host key. Insecure; kept as the reference default."""

    def missing_host_key(self, client, hostname, key):
        logger.warning(
            f"Host key for {hostname} not verified ({key.get_name()} "
            f"{key.get_fingerprint().hex()}); accepting it"
        )


def build_host_key_policy(name: str) -> paramiko.MissingHostKeyPolicy:
    if name == "accept":
        return AcceptAnyHostKeyPolicy()
    if name == "warn":
        return paramiko.WarningPolicy()
    if name == "reject":
        return paramiko.RejectPolicy()
    raise ValueError(f"Unknown host key policy: {name}")


def load_identity(path: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Load a private key of any supported type, raising AuthError on failure"""
    if not os.path.exists(path):
        raise AuthError(f"Identity file not found: {path}")
    secret = passphrase.encode("utf-8") if passphrase else None
    try:
        return paramiko.PKey.from_path(path, passphrase=secret)
    except paramiko.PasswordRequiredException as e:
        raise AuthError(f"Identity {path} is encrypted; a passphrase is required") from e
    except Exception as e:
        raise AuthError(f"Failed to load SSH key {path}: {e}") from e


class TransportSession:
    """One authenticated SSH connection, parent of every channel"""

    def __init__(
        self,
        params: ConnectionParams,
        client: paramiko.SSHClient,
        config: Optional[AppConfig] = None,
    ):
        self.params = params
        self.client = client
        self.config = config or AppConfig()
        self.status = ConnectionStatus.CONNECTED
        self.last_activity = time.monotonic()
        self.failure: Optional[TransportError] = None
        self._watchdog: Optional[asyncio.Task] = None

    @classmethod
    async def connect(
        cls,
        params: ConnectionParams,
        config: Optional[AppConfig] = None,
        passphrase: Optional[str] = None,
        host_key_policy: Optional[paramiko.MissingHostKeyPolicy] = None,
    ) -> "TransportSession":
        """Handshake and authenticate with the identity named by ``params``"""
        config = config or AppConfig()
        key_path = params.key_path()
        pkey = await run_blocking(load_identity, key_path, passphrase)

        client = paramiko.SSHClient()
        if config.host_key_policy == "reject":
            try:
                client.load_system_host_keys(config.known_hosts_file)
            except OSError as e:
                logger.warning(f"Could not load known hosts: {e}")
        client.set_missing_host_key_policy(
            host_key_policy or build_host_key_policy(config.host_key_policy)
        )

        logger.info(f"Connecting to {params.display_name()} with identity {key_path}")
        try:
            await run_blocking(
                client.connect,
                hostname=params.host,
                port=params.port,
                username=params.username,
                pkey=pkey,
                timeout=config.connect_timeout,
                banner_timeout=config.connect_timeout,
                auth_timeout=config.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            logger.error(f"Authentication failed for {params.display_name()}: {e}")
            raise AuthError(f"Authentication failed for {params.display_name()}: {e}") from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            client.close()
            logger.error(f"Failed to connect to {params.display_name()}: {e}")
            raise TransportError(f"Failed to connect to {params.display_name()}: {e}") from e

        session = cls(params, client, config)
        session._start_watchdog()
        logger.info(f"Connected to {params.display_name()}")
        return session

    @property
    def transport(self) -> Optional[paramiko.Transport]:
        return self.client.get_transport()

    @property
    def is_usable(self) -> bool:
        transport = self.transport
        return (
            self.failure is None
            and self.status == ConnectionStatus.CONNECTED
            and transport is not None
            and transport.is_active()
        )

    def touch(self) -> None:
        """Record channel traffic for the inactivity timeout"""
        self.last_activity = time.monotonic()

    def ensure_usable(self) -> paramiko.Transport:
        """The live paramiko transport, or TransportError if the session is dead"""
        if self.failure is not None:
            raise self.failure
        if self.status != ConnectionStatus.CONNECTED:
            raise TransportError(f"Session to {self.params.display_name()} is closed")
        transport = self.transport
        if transport is None or not transport.is_active():
            raise self.invalidate("connection lost")
        return transport

    def invalidate(self, reason: str) -> TransportError:
        """Mark the session unusable and close the connection.

        Returns the recorded error so callers can ``raise session.invalidate(...)``.
        """
        if self.failure is None:
            self.failure = TransportError(
                f"Session to {self.params.display_name()} failed: {reason}"
            )
            self.status = ConnectionStatus.ERROR
            logger.error(str(self.failure))
            self.client.close()
        return self.failure

    def check_failure(self, exc: BaseException, context: str) -> None:
        """Raise TransportError if ``exc`` came from a dead transport"""
        transport = self.transport
        if self.failure is not None:
            raise self.failure from exc
        if transport is None or not transport.is_active():
            raise self.invalidate(f"{context}: {str(exc) or type(exc).__name__}") from exc

    async def open_channel(self, kind, **options):
        """Open a channel of ``kind``; see ``bssh.channels.open_channel``"""
        from .channels import open_channel

        return await open_channel(self, kind, **options)

    def _start_watchdog(self) -> None:
        if self.config.inactivity_timeout and self.config.inactivity_timeout > 0:
            self._watchdog = asyncio.get_running_loop().create_task(
                self._watch_inactivity()
            )

    async def _watch_inactivity(self) -> None:
        timeout = self.config.inactivity_timeout
        interval = min(max(timeout / 10, 0.05), 10.0)
        while self.failure is None and self.status == ConnectionStatus.CONNECTED:
            await asyncio.sleep(interval)
            if self.status != ConnectionStatus.CONNECTED:
                break
            idle = time.monotonic() - self.last_activity
            if idle >= timeout:
                self.invalidate(f"inactivity timeout after {timeout:g}s")
                break
            transport = self.transport
            if transport is None or not transport.is_active():
                self.invalidate("connection lost")
                break

    async def close(self) -> None:
        """Close the connection; every channel opened on it is closed with it"""
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if self.status == ConnectionStatus.CONNECTED:
            self.status = ConnectionStatus.DISCONNECTED
            await run_blocking(self.client.close)
            logger.info(f"Disconnected from {self.params.display_name()}")

    async def __aenter__(self) -> "TransportSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
