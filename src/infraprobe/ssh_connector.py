"""
SSH Connector Module

Run a single command on a remote host over SSH and capture its output.

Authentication is either a private key (written to a 0600 temp file for the
lifetime of one command) or a running SSH agent reached through its socket.

Security Requirements:
- Key-based or agent authentication only
- No password prompts (BatchMode)
- Host key checking disabled: targets are freshly provisioned instances
- Private key material never logged
"""

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infraprobe.ssh_agent import SSHAgent

logger = logging.getLogger(__name__)

SSH_BINARY = "ssh"
DEFAULT_PORT = 22


class SSHCommandError(Exception):
    """Raised when an SSH command cannot run or exits non-zero.

    stdout is kept even on failure: a command may print and then fail.
    """

    def __init__(self, message: str, stdout: str = "", stderr: str = "", exit_code: int = -1):
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(message)


class SSHClientNotFoundError(SSHCommandError):
    """Raised when the ssh client binary is not installed."""

    pass


@dataclass
class SSHHost:
    """Target host and how to authenticate to it.

    Exactly one of private_key or agent must be set. With an agent,
    agent_public_key pins ssh to that one agent key instead of whatever
    ~/.ssh/id_* files happen to exist.
    """

    hostname: str
    user: str
    private_key: str | None = None
    agent: "SSHAgent | None" = None
    agent_public_key: str | None = None
    port: int = DEFAULT_PORT

    def __repr__(self) -> str:
        auth = "agent" if self.agent is not None else "key"
        return f"SSHHost({self.user}@{self.hostname}:{self.port}, auth={auth})"


@dataclass
class SSHCommandResult:
    """Captured result of one remote command."""

    stdout: str
    stderr: str
    exit_code: int


def _validate_host(host: SSHHost) -> None:
    if not host.hostname:
        raise ValueError("SSH host cannot be empty")
    if not host.user:
        raise ValueError("SSH user cannot be empty")
    if (host.private_key is None) == (host.agent is None):
        raise ValueError("SSHHost needs exactly one of private_key or agent")
    if not (1 <= host.port <= 65535):
        raise ValueError(f"Invalid SSH port: {host.port}")


@contextmanager
def _temporary_key_file(key: str, suffix: str = "") -> Iterator[Path]:
    fd, name = tempfile.mkstemp(prefix="infraprobe-key-", suffix=suffix)
    path = Path(name)
    try:
        os.chmod(path, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(key)
            if not key.endswith("\n"):
                f.write("\n")
        yield path
    finally:
        path.unlink(missing_ok=True)


@contextmanager
def private_key_file(private_key: str) -> Iterator[Path]:
    """Write a private key to a 0600 temp file, removed on exit."""
    with _temporary_key_file(private_key) as path:
        yield path


@contextmanager
def public_key_file(public_key: str) -> Iterator[Path]:
    """Write an OpenSSH public key to a temp .pub file, removed on exit.

    Given as -i together with an agent, ssh signs with the matching agent key.
    """
    with _temporary_key_file(public_key, suffix=".pub") as path:
        yield path


def build_ssh_command(
    host: SSHHost, command: str, key_path: Path | None = None, connect_timeout: int = 10
) -> list[str]:
    """
    Build SSH command with proper flags.

    Args:
        host: Target host
        command: Remote command line
        key_path: Identity file. A private key, or with an agent the public
            half of the agent key to use
        connect_timeout: ConnectTimeout in seconds

    Returns:
        list: SSH command arguments
    """
    args = [
        SSH_BINARY,
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "UserKnownHostsFile=/dev/null",
        "-o",
        "BatchMode=yes",
        "-o",
        "LogLevel=ERROR",
        "-o",
        f"ConnectTimeout={connect_timeout}",
        "-p",
        str(host.port),
    ]

    if host.agent is not None:
        args.extend(["-o", f"IdentityAgent={host.agent.socket_path}"])
    if key_path is not None:
        args.extend(["-i", str(key_path), "-o", "IdentitiesOnly=yes"])

    args.append(f"{host.user}@{host.hostname}")
    args.append(command)
    return args


def run_ssh_command(host: SSHHost, command: str, timeout: int = 60) -> SSHCommandResult:
    """
    Run command on host and capture output without judging the exit code.

    Raises:
        SSHCommandError: If ssh cannot be started or times out
        ValueError: If host is misconfigured
    """
    _validate_host(host)

    env = os.environ.copy()
    if host.agent is not None:
        env["SSH_AUTH_SOCK"] = str(host.agent.socket_path)

    logger.debug(f"Running command {command!r} on {host.user}@{host.hostname}")

    def _run(args: list[str]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise SSHCommandError(
                f"SSH command {command!r} on {host.hostname} timed out after {timeout}s"
            ) from e
        except FileNotFoundError as e:
            raise SSHClientNotFoundError("ssh not found. Please install OpenSSH client.") from e

    if host.private_key is not None:
        with private_key_file(host.private_key) as key_path:
            result = _run(build_ssh_command(host, command, key_path=key_path))
    elif host.agent_public_key is not None:
        with public_key_file(host.agent_public_key) as key_path:
            result = _run(build_ssh_command(host, command, key_path=key_path))
    else:
        result = _run(build_ssh_command(host, command))

    return SSHCommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)


def check_ssh_command(host: SSHHost, command: str, timeout: int = 60) -> str:
    """
    Run command on host and return stdout, failing on non-zero exit.

    Args:
        host: Target host
        command: Remote command line
        timeout: Seconds before the ssh process is killed

    Returns:
        str: Command stdout

    Raises:
        SSHCommandError: If the command cannot run or exits non-zero. The
            error carries stdout, stderr and exit_code.

    Example:
        >>> host = SSHHost(hostname="1.2.3.4", user="centos", private_key=pem)
        >>> check_ssh_command(host, "echo -n 'Hello, World'")
        'Hello, World'
    """
    result = run_ssh_command(host, command, timeout=timeout)

    if result.exit_code != 0:
        # 255 is ssh's own failure (connection refused, auth), anything else is the command
        raise SSHCommandError(
            f"SSH command {command!r} on {host.hostname} exited with status "
            f"{result.exit_code}: {result.stderr.strip()}",
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
        )

    return result.stdout


__all__ = [
    "SSHClientNotFoundError",
    "SSHCommandError",
    "SSHCommandResult",
    "SSHHost",
    "build_ssh_command",
    "check_ssh_command",
    "private_key_file",
    "public_key_file",
    "run_ssh_command",
]
