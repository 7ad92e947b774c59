"""Configuration for retry logic.

This module provides the retry settings used by the remote checks. They can
be tuned for slower images or regions through environment variables.

Design Philosophy:
- Ruthless simplicity: Single configuration file
- Sensible defaults: 30 attempts 15 seconds apart covers a cold boot
- Environment-aware: Can be overridden via env vars
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry policy for a single verification call."""

    max_attempts: int
    delay: float
    description: str

    def __post_init__(self):
        """Validate policy."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")

    @property
    def worst_case_seconds(self) -> float:
        """Upper bound on time spent sleeping between attempts."""
        return (self.max_attempts - 1) * self.delay


@dataclass
class RetryConfig:
    """Retry configuration settings.

    These settings control how long infraprobe waits for a new host.
    """

    # SSH checks
    ssh_max_attempts: int = 30
    ssh_delay: float = 15.0

    def ssh_policy(self, description: str) -> RetryPolicy:
        """Build the policy for one SSH check."""
        return RetryPolicy(
            max_attempts=self.ssh_max_attempts,
            delay=self.ssh_delay,
            description=description,
        )

    @classmethod
    def from_environment(cls) -> "RetryConfig":
        """Load retry configuration from environment variables.

        Environment variables (all optional):
            INFRAPROBE_RETRY_SSH_MAX_ATTEMPTS: Max SSH attempts (default: 30)
            INFRAPROBE_RETRY_SSH_DELAY: Seconds between SSH attempts (default: 15)

        Returns:
            RetryConfig with values from environment or defaults
        """
        return cls(
            ssh_max_attempts=int(os.getenv("INFRAPROBE_RETRY_SSH_MAX_ATTEMPTS", "30")),
            ssh_delay=float(os.getenv("INFRAPROBE_RETRY_SSH_DELAY", "15.0")),
        )


# Global configuration instance (lazily loaded)
_config: RetryConfig | None = None


def get_retry_config() -> RetryConfig:
    """Get global retry configuration.

    Returns:
        RetryConfig instance (loaded from environment on first access)
    """
    global _config
    if _config is None:
        _config = RetryConfig.from_environment()
    return _config


def reset_retry_config() -> None:
    """Reset global retry configuration.

    Forces reload from environment on next access.
    """
    global _config
    _config = None


__all__ = ["RetryConfig", "RetryPolicy", "get_retry_config", "reset_retry_config"]
