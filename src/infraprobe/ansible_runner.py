"""Ansible ad-hoc command runner.

Writes a throwaway inventory naming a single host under the "all" group and
runs the ping module against it with the ansible CLI.

Security:
- No shell=True
- Inventory file removed after every run
"""

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ANSIBLE_BINARY = "ansible"


class AnsibleError(Exception):
    """Raised when the ansible CLI cannot be run."""

    pass


@dataclass
class AnsibleResult:
    """Captured output of one ansible invocation."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def render_inventory(host: str) -> str:
    """Inventory text for one host in the all group (no trailing newline)."""
    return f"[all]\n{host}"


@contextmanager
def temporary_inventory(host: str, working_dir: Path | str = ".") -> Iterator[Path]:
    """Write a one-host inventory in working_dir, removed on exit.

    The file is named hosts<random> so concurrent runs do not collide.
    """
    fd, name = tempfile.mkstemp(prefix="hosts", dir=str(working_dir))
    path = Path(name)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(render_inventory(host))
        logger.info(f"Created File: {path}")
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove inventory {path}: {e}")


def build_ping_command(inventory: Path | str, user: str) -> list[str]:
    """Build `ansible -i <inventory> -m ping all -u <user>`."""
    return [ANSIBLE_BINARY, "-i", str(inventory), "-m", "ping", "all", "-u", user]


def run_ping(
    inventory: Path | str, user: str, working_dir: Path | str = ".", timeout: int = 300
) -> AnsibleResult:
    """
    Run the ansible ping module against every host in inventory.

    Args:
        inventory: Inventory file
        user: Remote user (-u)
        working_dir: Directory to run ansible in
        timeout: Seconds before ansible is killed

    Returns:
        AnsibleResult with raw stdout (untouched)

    Raises:
        AnsibleError: If ansible is missing or times out
    """
    cmd = build_ping_command(inventory, user)
    logger.info("Executing Ansible Test...")
    logger.debug(f"Running {' '.join(cmd)} in {working_dir}")

    try:
        result = subprocess.run(
            cmd,
            cwd=str(working_dir),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise AnsibleError("ansible not found. Please install Ansible.") from e
    except subprocess.TimeoutExpired as e:
        raise AnsibleError(f"ansible timed out after {timeout}s") from e

    return AnsibleResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)


__all__ = [
    "AnsibleError",
    "AnsibleResult",
    "build_ping_command",
    "render_inventory",
    "run_ping",
    "temporary_inventory",
]
