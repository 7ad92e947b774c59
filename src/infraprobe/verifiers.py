"""Remote command verifiers.

Each check wraps one remote call and decides what counts as success:

- check_ssh_to_host: key auth, trimmed stdout must equal the expected text
- check_ssh_error_command: the command must fail AND still print the text
- check_ssh_agent_to_host: like the first, authenticated through an agent
- check_ansible_ping: one ansible ping, raw stdout compared byte for byte

The SSH checks run under a RetryPolicy because a new instance takes a while
to accept connections; exhausting the policy raises VerificationError. The
Ansible check runs once and reports failure in its outcome instead of raising.

SSH output is trimmed before comparison, Ansible output is not.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from infraprobe.ansible_runner import AnsibleError, run_ping, temporary_inventory
from infraprobe.aws_keypair import KeyPair
from infraprobe.retry_config import RetryPolicy
from infraprobe.retry_handler import FatalError, RetryExhaustedError, do_with_retry_policy
from infraprobe.ssh_agent import SSHAgentError, running_agent
from infraprobe.ssh_connector import (
    SSHClientNotFoundError,
    SSHCommandError,
    SSHHost,
    check_ssh_command,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_TEXT = "Hello, World"
DEFAULT_SSH_USER = "centos"
DEFAULT_PYTHON_INTERPRETER = "/usr/libexec/platform-python"


class VerificationError(Exception):
    """Raised when a retried check never succeeds."""

    def __init__(self, outcome: "VerificationOutcome"):
        self.outcome = outcome
        super().__init__(
            f"{outcome.description} failed after {outcome.attempts} attempts: {outcome.error}"
        )


@dataclass
class VerificationOutcome:
    """Result of one verification call."""

    description: str
    attempts: int
    success: bool
    output: str = ""
    error: str | None = None


def echo_command(expected_text: str) -> str:
    return f"echo -n '{expected_text}'"


def error_command(expected_text: str) -> str:
    return f"{echo_command(expected_text)} && exit 1"


def ansible_ping_success_text(host: str, interpreter: str = DEFAULT_PYTHON_INTERPRETER) -> str:
    """The exact line ansible prints for a successful ping of host."""
    return (
        f'{host} | SUCCESS => {{"ansible_facts": '
        f'{{"discovered_interpreter_python": "{interpreter}"}}, '
        f'"changed": false, "ping": "pong"}}'
    )


def _run_retried(
    policy: RetryPolicy,
    attempt_fn: Callable[[], str],
    sleep: Callable[[float], Any],
) -> VerificationOutcome:
    attempts = 0

    def operation() -> str:
        nonlocal attempts
        attempts += 1
        try:
            return attempt_fn()
        except SSHClientNotFoundError as e:
            # Not transient
            raise FatalError(e) from e

    try:
        output = do_with_retry_policy(policy, operation, sleep=sleep)
    except RetryExhaustedError as e:
        last: object = e.last_error
    except FatalError as e:
        last = e.cause
    else:
        return VerificationOutcome(
            description=policy.description, attempts=attempts, success=True, output=output or ""
        )

    raise VerificationError(
        VerificationOutcome(
            description=policy.description,
            attempts=attempts,
            success=False,
            error=str(last),
        )
    )


def _expect_output(host: SSHHost, command: str, expected_text: str) -> str:
    actual_text = check_ssh_command(host, command)
    if actual_text.strip() != expected_text:
        raise ValueError(
            f"Expected SSH command {command!r} on {host.hostname} to return "
            f"'{expected_text}' but got '{actual_text}'"
        )
    return actual_text


def check_ssh_to_host(
    public_ip: str,
    key_pair: KeyPair,
    policy: RetryPolicy,
    user: str = DEFAULT_SSH_USER,
    expected_text: str = DEFAULT_EXPECTED_TEXT,
    sleep: Callable[[float], Any] = time.sleep,
) -> VerificationOutcome:
    """SSH with the private key and check that echo returns expected_text.

    Raises:
        VerificationError: If no attempt succeeds
    """
    host = SSHHost(hostname=public_ip, user=user, private_key=key_pair.private_key)
    command = echo_command(expected_text)
    return _run_retried(policy, lambda: _expect_output(host, command, expected_text), sleep)


def check_ssh_error_command(
    public_ip: str,
    key_pair: KeyPair,
    policy: RetryPolicy,
    user: str = DEFAULT_SSH_USER,
    expected_text: str = DEFAULT_EXPECTED_TEXT,
    sleep: Callable[[float], Any] = time.sleep,
) -> VerificationOutcome:
    """Check that a failing remote command is reported as an error with its output.

    Success requires a non-zero exit AND trimmed stdout equal to expected_text.

    Raises:
        VerificationError: If no attempt succeeds
    """
    host = SSHHost(hostname=public_ip, user=user, private_key=key_pair.private_key)
    command = error_command(expected_text)

    def attempt() -> str:
        try:
            check_ssh_command(host, command)
        except SSHClientNotFoundError:
            raise
        except SSHCommandError as e:
            if e.stdout.strip() != expected_text:
                raise ValueError(
                    f"Expected SSH command {command!r} on {host.hostname} to return "
                    f"'{expected_text}' but got '{e.stdout}'"
                ) from e
            return e.stdout
        raise ValueError(
            f"Expected SSH command {command!r} on {host.hostname} to return an error but got none"
        )

    return _run_retried(policy, attempt, sleep)


def check_ssh_agent_to_host(
    public_ip: str,
    key_pair: KeyPair,
    policy: RetryPolicy,
    user: str = DEFAULT_SSH_USER,
    expected_text: str = DEFAULT_EXPECTED_TEXT,
    sleep: Callable[[float], Any] = time.sleep,
) -> VerificationOutcome:
    """SSH through an in-process agent holding the key and check echo output.

    The agent is stopped when this returns or raises.

    Raises:
        VerificationError: If the agent cannot start or no attempt succeeds
    """
    command = echo_command(expected_text)

    try:
        with running_agent(key_pair) as agent:
            host = SSHHost(
                hostname=public_ip,
                user=user,
                agent=agent,
                agent_public_key=key_pair.public_key,
            )
            return _run_retried(policy, lambda: _expect_output(host, command, expected_text), sleep)
    except SSHAgentError as e:
        raise VerificationError(
            VerificationOutcome(
                description=policy.description, attempts=0, success=False, error=str(e)
            )
        ) from e


def check_ansible_ping(
    public_ip: str,
    user: str = DEFAULT_SSH_USER,
    interpreter: str = DEFAULT_PYTHON_INTERPRETER,
    working_dir: Path | str = ".",
) -> VerificationOutcome:
    """Run one ansible ping against public_ip and compare raw output.

    Never retried and never raises for a failed ping: the outcome carries the
    failure. The inventory file is removed either way.
    """
    description = f"Ansible ping to public host {public_ip}"
    success_text = ansible_ping_success_text(public_ip, interpreter)

    with temporary_inventory(public_ip, working_dir) as inventory:
        try:
            result = run_ping(inventory, user, working_dir=working_dir)
        except AnsibleError as e:
            logger.error(f"{description} could not run: {e}")
            return VerificationOutcome(description=description, attempts=1, success=False, error=str(e))

    if result.stdout != success_text:
        error = f"Expected command to return '{success_text}' but got '{result.stdout}'"
        if result.exit_code != 0:
            error += f" (exit status {result.exit_code}: {result.stderr.strip()})"
        logger.error(f"{description}: {error}")
        return VerificationOutcome(
            description=description,
            attempts=1,
            success=False,
            output=result.stdout,
            error=error,
        )

    return VerificationOutcome(
        description=description, attempts=1, success=True, output=result.stdout
    )


__all__ = [
    "VerificationError",
    "VerificationOutcome",
    "ansible_ping_success_text",
    "check_ansible_ping",
    "check_ssh_agent_to_host",
    "check_ssh_error_command",
    "check_ssh_to_host",
    "echo_command",
    "error_command",
]
