"""
SSH transport — run commands on the target host over paramiko.

One connection is opened lazily and reused for every command of a run.
If it drops (sshd restart, network reconfiguration) the next command
reconnects once before reporting the host unreachable.
"""

from __future__ import annotations

import logging
import os
import socket
import time
from pathlib import Path

import paramiko

from hostforge.adapters.base import Transport, wrap_sudo
from hostforge.core.models.command import CommandResult
from hostforge.core.models.runbook import HostSpec

logger = logging.getLogger(__name__)

_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey)


def load_private_key(path: str) -> paramiko.PKey:
    """Load a private key file, trying each supported key type."""
    key_path = str(Path(path).expanduser())
    errors = []
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key_file(key_path)
        except paramiko.SSHException as e:
            errors.append(f"{key_cls.__name__}: {e}")
    raise paramiko.SSHException(
        f"Unsupported private key format for {key_path}: {'; '.join(errors)}"
    )


class SSHTransport(Transport):
    """Execute commands on a remote host over SSH.

    Authentication order: the configured identity file, then the SSH
    agent and default keys, then a password read from the environment
    variable named by `host.password_env` (first-contact key injection).
    """

    def __init__(self, host: HostSpec, transport_name: str = "ssh"):
        self._host = host
        self._name = transport_name
        self._client: paramiko.SSHClient | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def host(self) -> HostSpec:
        return self._host

    # ── Connection ──────────────────────────────────────────────

    def _connect(self) -> paramiko.SSHClient:
        host = self._host
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if host.strict_host_keys:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        pkey = load_private_key(host.identity_file) if host.identity_file else None
        password = os.environ.get(host.password_env) or None

        client.connect(
            hostname=host.address or "localhost",
            port=host.port,
            username=host.user,
            pkey=pkey,
            password=password,
            timeout=host.connect_timeout,
            allow_agent=pkey is None,
            look_for_keys=pkey is None,
        )
        logger.info("Connected to %s", host.display)
        return client

    def _ensure_client(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            logger.info("SSH connection to %s dropped, reconnecting", self._host.display)
            self.close()
        self._client = self._connect()
        return self._client

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None

    def is_available(self) -> bool:
        try:
            self._ensure_client()
            return True
        except (paramiko.SSHException, OSError) as e:
            logger.debug("SSH to %s not available: %s", self._host.display, e)
            return False

    # ── Execution ───────────────────────────────────────────────

    def _exec(self, client: paramiko.SSHClient, line: str, timeout: float) -> tuple[int, str, str]:
        stdin, stdout, stderr = client.exec_command(line, timeout=timeout)
        stdin.close()
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        exit_code = stdout.channel.recv_exit_status()
        return exit_code, out, err

    def run(self, command: str, *, timeout: float, sudo: bool = False) -> CommandResult:
        line = wrap_sudo(command) if sudo else command
        logger.debug("Executing on %s: %s (timeout=%ss)", self._host.display, line, timeout)
        start = time.monotonic()

        for attempt in (1, 2):
            try:
                client = self._ensure_client()
            except (paramiko.SSHException, OSError) as e:
                return CommandResult.unreachable(
                    transport=self.name,
                    command=command,
                    error=f"Cannot connect to {self._host.display}: {e}",
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

            try:
                exit_code, out, err = self._exec(client, line, timeout)
            except socket.timeout:
                self.close()
                return CommandResult.timeout(
                    transport=self.name,
                    command=command,
                    seconds=timeout,
                    duration_ms=int((time.monotonic() - start) * 1000),
                )
            except (paramiko.SSHException, OSError) as e:
                # Only a channel that failed to open is safe to retry;
                # the command never started.
                self.close()
                if attempt == 1 and isinstance(e, paramiko.ChannelException):
                    continue
                return CommandResult.unreachable(
                    transport=self.name,
                    command=command,
                    error=f"SSH session to {self._host.display} failed: {e}",
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

            return CommandResult.completed(
                transport=self.name,
                command=command,
                exit_code=exit_code,
                stdout=out,
                stderr=err,
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"host": self._host.display, "sudo": sudo},
            )

        return CommandResult.unreachable(
            transport=self.name,
            command=command,
            error=f"SSH session to {self._host.display} could not be opened",
        )
