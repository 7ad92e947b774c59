"""Terraform CLI wrapper.

Runs the terraform binary as a subprocess against a working directory with
-var inputs, the way the scenario needs: init, apply, output, destroy.

Security:
- No shell=True, arguments passed as a list
- Variable values are never logged at INFO (may include names only)
"""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

TERRAFORM_BINARY = "terraform"


class TerraformError(Exception):
    """Raised when a terraform command fails."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = ""):
        self.command = command or []
        self.stderr = stderr
        super().__init__(message)


@dataclass
class TerraformOptions:
    """Inputs for every terraform invocation of one scenario."""

    terraform_dir: str
    vars: dict[str, Any] = field(default_factory=dict)
    env_vars: dict[str, str] = field(default_factory=dict)
    no_color: bool = True
    binary: str = TERRAFORM_BINARY

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for persistence."""
        return {
            "terraform_dir": self.terraform_dir,
            "vars": dict(self.vars),
            "env_vars": dict(self.env_vars),
            "no_color": self.no_color,
            "binary": self.binary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TerraformOptions":
        """Create from dictionary."""
        return cls(
            terraform_dir=data["terraform_dir"],
            vars=dict(data.get("vars", {})),
            env_vars=dict(data.get("env_vars", {})),
            no_color=data.get("no_color", True),
            binary=data.get("binary", TERRAFORM_BINARY),
        )


def format_var_args(variables: dict[str, Any]) -> list[str]:
    """Build -var arguments.

    Strings pass through; lists, dicts and booleans are rendered as HCL
    compatible JSON literals.

    Example:
        >>> format_var_args({"aws_region": "us-east-1"})
        ['-var', 'aws_region=us-east-1']
    """
    args: list[str] = []
    for key, value in variables.items():
        if isinstance(value, str):
            rendered = value
        else:
            rendered = json.dumps(value)
        args.extend(["-var", f"{key}={rendered}"])
    return args


def run_terraform_command(options: TerraformOptions, *args: str) -> str:
    """Run terraform with args in options.terraform_dir and return stdout.

    Raises:
        TerraformError: If terraform is missing or exits non-zero
    """
    cmd = [options.binary, *args]
    if options.no_color and "-no-color" not in args:
        cmd.append("-no-color")

    env = os.environ.copy()
    env.update(options.env_vars)
    env.setdefault("TF_IN_AUTOMATION", "1")

    logger.debug(f"Running command {options.binary} with args {list(args)} in {options.terraform_dir}")

    try:
        result = subprocess.run(
            cmd,
            cwd=options.terraform_dir,
            env=env,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise TerraformError(
            f"{options.binary} not found. Please install Terraform.", command=cmd
        ) from e

    if result.stdout:
        logger.debug(result.stdout.rstrip())

    if result.returncode != 0:
        stderr = result.stderr.strip()
        raise TerraformError(
            f"terraform {args[0] if args else ''} failed (rc={result.returncode}): {stderr}",
            command=cmd,
            stderr=stderr,
        )

    return result.stdout


def init(options: TerraformOptions) -> str:
    """Run terraform init."""
    logger.info(f"Running terraform init in {options.terraform_dir}")
    return run_terraform_command(options, "init", "-upgrade=false", "-input=false")


def apply(options: TerraformOptions) -> str:
    """Run terraform apply with auto-approve."""
    logger.info(f"Running terraform apply in {options.terraform_dir}")
    return run_terraform_command(
        options,
        "apply",
        "-input=false",
        "-auto-approve",
        "-lock=false",
        *format_var_args(options.vars),
    )


def init_and_apply(options: TerraformOptions) -> str:
    """Run terraform init then apply. Fails on the first error."""
    init(options)
    return apply(options)


def destroy(options: TerraformOptions) -> str:
    """Run terraform destroy with auto-approve."""
    logger.info(f"Running terraform destroy in {options.terraform_dir}")
    return run_terraform_command(
        options,
        "destroy",
        "-auto-approve",
        "-input=false",
        *format_var_args(options.vars),
    )


def output(options: TerraformOptions, name: str) -> str:
    """Read one output value as a string.

    Raises:
        TerraformError: If the output is missing or not valid JSON
    """
    raw = run_terraform_command(options, "output", "-no-color", "-json", name)

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TerraformError(f"Output {name} is not valid JSON: {raw!r}") from e

    if value is None:
        raise TerraformError(f"Output {name} has no value")

    if isinstance(value, str):
        return value.strip()
    return json.dumps(value)


__all__ = [
    "TerraformError",
    "TerraformOptions",
    "apply",
    "destroy",
    "format_var_args",
    "init",
    "init_and_apply",
    "output",
    "run_terraform_command",
]
