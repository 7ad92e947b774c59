"""
SSH Agent Module

Start a private ssh-agent for the duration of a check and load a key into it
from memory, so the ssh client authenticates through the agent instead of a
key file.

Security:
- Agent socket lives in a 0700 temp directory owned by this process
- Key is passed to ssh-add on stdin, never written to disk
- Agent process is terminated and the socket removed on stop()
"""

import logging
import os
import shutil
import subprocess
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from infraprobe.aws_keypair import KeyPair

logger = logging.getLogger(__name__)

SSH_AGENT_BINARY = "ssh-agent"
SSH_ADD_BINARY = "ssh-add"


class SSHAgentError(Exception):
    """Raised when the agent cannot be started or loaded with a key."""

    pass


class SSHAgent:
    """A private ssh-agent process bound to a socket in a temp directory.

    Use as a context manager, or call stop() in a finally block.
    """

    def __init__(self, socket_wait: float = 5.0):
        self.socket_wait = socket_wait
        self._socket_dir: Path | None = None
        self._process: subprocess.Popen[bytes] | None = None

    @property
    def socket_path(self) -> Path:
        if self._socket_dir is None:
            raise SSHAgentError("SSH agent is not running")
        return self._socket_dir / "agent.sock"

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> "SSHAgent":
        """Start ssh-agent in the foreground (-D) on a private socket."""
        if self._process is not None:
            raise SSHAgentError("SSH agent already started")

        self._socket_dir = Path(tempfile.mkdtemp(prefix="infraprobe-agent-"))
        os.chmod(self._socket_dir, 0o700)

        try:
            self._process = subprocess.Popen(
                [SSH_AGENT_BINARY, "-D", "-a", str(self.socket_path)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self._remove_socket_dir()
            raise SSHAgentError("ssh-agent not found. Please install OpenSSH client.") from e

        deadline = time.monotonic() + self.socket_wait
        while not self.socket_path.exists():
            if self._process.poll() is not None or time.monotonic() >= deadline:
                self.stop()
                raise SSHAgentError("ssh-agent did not create its socket")
            time.sleep(0.05)

        logger.debug(f"Started SSH agent on {self.socket_path}")
        return self

    def add_key(self, private_key: str) -> None:
        """Load a PEM private key into the agent from memory."""
        env = os.environ.copy()
        env["SSH_AUTH_SOCK"] = str(self.socket_path)

        key_input = private_key if private_key.endswith("\n") else private_key + "\n"

        try:
            result = subprocess.run(
                [SSH_ADD_BINARY, "-"],
                input=key_input,
                capture_output=True,
                text=True,
                env=env,
                timeout=30,
                check=False,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise SSHAgentError(f"ssh-add failed: {e}") from e

        if result.returncode != 0:
            raise SSHAgentError(f"ssh-add failed: {result.stderr.strip()}")

    def stop(self) -> None:
        """Terminate the agent and remove its socket. Safe to call twice."""
        if self._process is not None:
            if self._process.poll() is None:
                self._process.terminate()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    self._process.kill()
                    self._process.wait()
            logger.debug("Stopped SSH agent")
            self._process = None

        self._remove_socket_dir()

    def _remove_socket_dir(self) -> None:
        if self._socket_dir is not None:
            shutil.rmtree(self._socket_dir, ignore_errors=True)
            self._socket_dir = None

    def __enter__(self) -> "SSHAgent":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def ssh_agent_with_key_pair(key_pair: KeyPair) -> SSHAgent:
    """Start an agent holding key_pair's private key. Caller must stop() it."""
    agent = SSHAgent().start()
    try:
        agent.add_key(key_pair.private_key)
    except SSHAgentError:
        agent.stop()
        raise
    return agent


@contextmanager
def running_agent(key_pair: KeyPair) -> Iterator[SSHAgent]:
    """Context manager form of ssh_agent_with_key_pair."""
    agent = ssh_agent_with_key_pair(key_pair)
    try:
        yield agent
    finally:
        agent.stop()


__all__ = ["SSHAgent", "SSHAgentError", "running_agent", "ssh_agent_with_key_pair"]
