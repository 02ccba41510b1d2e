"""SSH transport for reading tasks files on remote hosts.

Wraps paramiko SSHClient. Every call opens a fresh session and closes it on
every exit path. paramiko is blocking, so the work runs in a worker thread
under a mandatory overall timeout.
"""

import asyncio
import io
import shlex
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import paramiko

from ...core.config import settings
from ...core.errors import AuthError, NotFoundError, ReadError, SyncTimeoutError
from ...core.logging import get_logger
from ...models import RemoteServer

logger = get_logger(__name__)

# Key types tried in order when parsing an inline private key
KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


@dataclass
class SSHCredentials:
    """Connection parameters. Exactly one of private_key / password is allowed."""

    host: str
    username: str
    port: int = 22
    private_key: str | None = None
    password: str | None = None

    @classmethod
    def from_server(cls, server: RemoteServer) -> "SSHCredentials":
        return cls(
            host=server.host,
            port=server.port,
            username=server.username,
            private_key=server.private_key,
            password=server.password,
        )

    def validate(self) -> None:
        """Raise AuthError for incomplete or ambiguous credentials."""
        if not self.host or not self.username:
            raise AuthError("SSH host and username are required")
        if not self.port or not 0 < int(self.port) < 65536:
            raise AuthError(f"Invalid SSH port: {self.port}")
        if bool(self.private_key) == bool(self.password):
            raise AuthError("Provide exactly one of SSH private key or password")


@dataclass
class ConnectionCheck:
    """Outcome of a successful connectivity check."""

    hostname: str
    tasks_file_exists: bool


def load_private_key(text: str) -> paramiko.PKey:
    """Parse an inline private key of any supported type."""
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError):
            continue
    raise AuthError("Unsupported or invalid SSH private key")


class SSHTaskClient:
    """Reads files from remote hosts over SSH."""

    def __init__(
        self,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        """
        Args:
            connect_timeout: TCP/banner/auth timeout for one connection
            read_timeout: Overall timeout for the whole read
            client_factory: Builds the SSH client (replaced by fakes in tests)
        """
        self.connect_timeout = connect_timeout or settings.SSH_CONNECT_TIMEOUT
        self.read_timeout = read_timeout or settings.SSH_READ_TIMEOUT
        self.client_factory = client_factory

    async def read_file(self, credentials: SSHCredentials, remote_path: str) -> bytes:
        """Read one remote file.

        Raises:
            AuthError: credentials missing, ambiguous or rejected
            NotFoundError: the file does not exist on the host
            SyncTimeoutError: the read did not finish within read_timeout
            ReadError: any other SSH or network failure
        """
        return await self._run(credentials, remote_path, self._read)

    async def check_connection(
        self, credentials: SSHCredentials, remote_path: str
    ) -> ConnectionCheck:
        """Connect, run `hostname` and report whether the tasks file exists.

        Raises the same errors as read_file, except that a missing file is
        reported in the result instead of raised.
        """
        return await self._run(credentials, remote_path, self._check)

    async def _run(self, credentials: SSHCredentials, remote_path: str, work: Callable):
        credentials.validate()

        # Created here so the timeout path can close a session the thread still holds
        client = self.client_factory()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._session, work, client, credentials, remote_path),
                timeout=self.read_timeout,
            )
        except TimeoutError as e:
            client.close()
            logger.warning(
                "SSH read timed out",
                extra={"host": credentials.host, "path": remote_path, "timeout": self.read_timeout},
            )
            raise SyncTimeoutError(
                f"Timed out after {self.read_timeout:g}s reading {remote_path} on {credentials.host}"
            ) from e

    def _connect_kwargs(self, credentials: SSHCredentials) -> dict:
        kwargs: dict = dict(
            hostname=credentials.host,
            port=int(credentials.port),
            username=credentials.username,
            timeout=self.connect_timeout,
            banner_timeout=self.connect_timeout,
            auth_timeout=self.connect_timeout,
            look_for_keys=False,
            allow_agent=False,
        )
        if credentials.private_key:
            kwargs["pkey"] = load_private_key(credentials.private_key)
        else:
            kwargs["password"] = credentials.password
        return kwargs

    def _exec(self, client: paramiko.SSHClient, command: str) -> bytes:
        """Run a command and return stdout. Non-zero exit is a ReadError."""
        _, stdout, stderr = client.exec_command(command, timeout=self.read_timeout)
        output = stdout.read()
        exit_status = stdout.channel.recv_exit_status()
        if exit_status != 0:
            message = stderr.read().decode("utf-8", errors="replace").strip()
            raise ReadError(f"Remote command failed with exit code {exit_status}: {message}")
        return output

    def _file_exists(self, client: paramiko.SSHClient, remote_path: str) -> bool:
        quoted = shlex.quote(remote_path)
        check = self._exec(client, f"test -f {quoted} && echo exists || echo missing")
        return check.decode("utf-8", errors="replace").strip() == "exists"

    def _session(
        self,
        work: Callable[[paramiko.SSHClient, SSHCredentials, str], Any],
        client: paramiko.SSHClient,
        credentials: SSHCredentials,
        remote_path: str,
    ) -> Any:
        """Connect, run `work` and map paramiko failures to sync errors."""
        target = f"{credentials.username}@{credentials.host}:{credentials.port}"
        try:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            client.connect(**self._connect_kwargs(credentials))
            return work(client, credentials, remote_path)
        except paramiko.AuthenticationException as e:
            raise AuthError(f"SSH authentication failed for {target}") from e
        except socket.timeout as e:
            raise SyncTimeoutError(f"SSH connection to {target} timed out") from e
        except (paramiko.SSHException, OSError) as e:
            raise ReadError(f"SSH error on {target}: {e}") from e
        finally:
            client.close()

    def _read(self, client: paramiko.SSHClient, credentials: SSHCredentials, remote_path: str) -> bytes:
        if not self._file_exists(client, remote_path):
            raise NotFoundError(f"Tasks file not found on {credentials.host}: {remote_path}")

        content = self._exec(client, f"cat {shlex.quote(remote_path)}")
        logger.info(
            "Read remote tasks file",
            extra={"host": credentials.host, "path": remote_path, "bytes": len(content)},
        )
        return content

    def _check(
        self, client: paramiko.SSHClient, credentials: SSHCredentials, remote_path: str
    ) -> ConnectionCheck:
        hostname = self._exec(client, "hostname").decode("utf-8", errors="replace").strip()
        exists = self._file_exists(client, remote_path)
        logger.info(
            "SSH connection check passed",
            extra={"host": credentials.host, "hostname": hostname, "tasks_file_exists": exists},
        )
        return ConnectionCheck(hostname=hostname, tasks_file_exists=exists)
