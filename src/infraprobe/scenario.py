"""Scenario orchestrator: setup, validate, teardown.

setup     create an EC2 key pair, save it and the Terraform options, apply
validate  SSH with the key, SSH with a failing command, SSH through an agent,
          then ping the host with Ansible
teardown  destroy the Terraform resources and delete the key pair

Every stage receives a ScenarioContext and reads or writes saved state
through test_structure, so each stage can also run alone in its own process
(see `infraprobe stage`). ScenarioOrchestrator.run() runs all three and
always attempts teardown once the fixture has been staged.
"""

import logging
import random
import shutil
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from infraprobe import terraform, test_structure
from infraprobe.aws_keypair import (
    Ec2KeyPair,
    KeyPairError,
    create_and_import_ec2_key_pair,
    delete_ec2_key_pair,
)
from infraprobe.config_manager import HarnessConfig
from infraprobe.retry_config import RetryConfig, get_retry_config
from infraprobe.terraform import TerraformError, TerraformOptions
from infraprobe.test_structure import StageToggles, TestDataError
from infraprobe.verifiers import (
    VerificationOutcome,
    check_ansible_ping,
    check_ssh_agent_to_host,
    check_ssh_error_command,
    check_ssh_to_host,
)

logger = logging.getLogger(__name__)

UNIQUE_ID_LENGTH = 6
_UNIQUE_ID_ALPHABET = string.digits + string.ascii_letters


def unique_id(length: int = UNIQUE_ID_LENGTH) -> str:
    """Short random base62 id for namespacing cloud resources."""
    return "".join(random.choices(_UNIQUE_ID_ALPHABET, k=length))


@dataclass
class ScenarioContext:
    """Everything a stage needs. Passed explicitly to every stage.

    temp_root is the temp directory holding a copied fixture; teardown removes
    it once everything has been destroyed.
    """

    terraform_folder: Path
    config: HarnessConfig = field(default_factory=HarnessConfig)
    retry_config: RetryConfig = field(default_factory=get_retry_config)
    toggles: StageToggles = field(default_factory=StageToggles)
    working_dir: Path = field(default_factory=Path.cwd)
    ec2_client: Any | None = None
    sleep: Callable[[float], Any] = time.sleep
    temp_root: Path | None = None


@dataclass
class ScenarioResult:
    """What happened during a scenario run."""

    stages_run: list[str] = field(default_factory=list)
    outcomes: list[VerificationOutcome] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


def configure_terraform_options(context: ScenarioContext) -> tuple[TerraformOptions, Ec2KeyPair]:
    """Create a uniquely named key pair and the Terraform options that use it."""
    config = context.config
    uid = unique_id()

    instance_name = f"{config.name_prefix}-{uid}"
    key_pair_name = f"{config.name_prefix}-{uid}"

    key_pair = create_and_import_ec2_key_pair(
        config.aws_region, key_pair_name, client=context.ec2_client
    )

    options = TerraformOptions(
        terraform_dir=str(context.terraform_folder),
        vars={
            "aws_region": config.aws_region,
            "instance_name": instance_name,
            "key_pair_name": key_pair_name,
        },
    )
    return options, key_pair


def setup_stage(context: ScenarioContext, result: ScenarioResult) -> None:
    """Provision. Raises on any key pair or Terraform error."""
    options, key_pair = configure_terraform_options(context)

    # Saved before apply so teardown can clean up after a failed apply
    test_structure.save_terraform_options(context.terraform_folder, options)
    test_structure.save_ec2_key_pair(context.terraform_folder, key_pair)

    terraform.init_and_apply(options)


def validate_stage(context: ScenarioContext, result: ScenarioResult) -> None:
    """Run the checks against the provisioned host.

    SSH checks raise VerificationError when they never succeed. A failed
    Ansible ping is recorded in result.failures without raising.
    """
    config = context.config
    options = test_structure.load_terraform_options(context.terraform_folder)
    ec2_key_pair = test_structure.load_ec2_key_pair(context.terraform_folder)
    key_pair = ec2_key_pair.key_pair

    public_ip = terraform.output(options, config.public_ip_output)
    retry = context.retry_config

    checks = [
        (check_ssh_to_host, f"SSH to public host {public_ip}"),
        (check_ssh_error_command, f"SSH to public host {public_ip} with error command"),
        (check_ssh_agent_to_host, f"SSH with Agent to public host {public_ip}"),
    ]
    for check, description in checks:
        outcome = check(
            public_ip,
            key_pair,
            retry.ssh_policy(description),
            user=config.ssh_user,
            expected_text=config.expected_text,
            sleep=context.sleep,
        )
        result.outcomes.append(outcome)

    outcome = check_ansible_ping(
        public_ip,
        user=config.ansible_user,
        interpreter=config.ansible_interpreter,
        working_dir=context.working_dir,
    )
    result.outcomes.append(outcome)
    if not outcome.success:
        result.failures.append(f"{outcome.description}: {outcome.error}")


def teardown_stage(context: ScenarioContext, result: ScenarioResult) -> None:
    """Destroy and delete the key pair. Never raises for cleanup errors.

    Errors are recorded in result.failures so the run still fails.
    """
    folder = context.terraform_folder
    failures_before = len(result.failures)

    try:
        options = test_structure.load_terraform_options(folder)
    except TestDataError as e:
        logger.warning(f"No usable Terraform options, skipping destroy: {e}")
        if test_structure.is_test_data_present(folder, test_structure.TERRAFORM_OPTIONS_NAME):
            result.failures.append(f"teardown: {e}")
    else:
        try:
            terraform.destroy(options)
        except TerraformError as e:
            logger.warning(f"terraform destroy failed, resources may be left behind: {e}")
            result.failures.append(f"teardown: {e}")
        else:
            test_structure.clean_test_data(folder, test_structure.TERRAFORM_OPTIONS_NAME)

    try:
        ec2_key_pair = test_structure.load_ec2_key_pair(folder)
    except TestDataError as e:
        logger.warning(f"No usable key pair, skipping key pair deletion: {e}")
        if test_structure.is_test_data_present(folder, test_structure.EC2_KEY_PAIR_NAME):
            result.failures.append(f"teardown: {e}")
    else:
        try:
            delete_ec2_key_pair(ec2_key_pair, client=context.ec2_client)
        except KeyPairError as e:
            logger.warning(f"Failed to delete key pair {ec2_key_pair.name}: {e}")
            result.failures.append(f"teardown: {e}")
        else:
            test_structure.clean_test_data(folder, test_structure.EC2_KEY_PAIR_NAME)

    # Keep the copy (and its state) around when something could not be cleaned up
    if context.temp_root is not None and len(result.failures) == failures_before:
        logger.info(f"Removing temporary Terraform copy {context.temp_root}")
        shutil.rmtree(context.temp_root, ignore_errors=True)
        context.temp_root = None


STAGE_FUNCTIONS: dict[str, Callable[[ScenarioContext, ScenarioResult], None]] = {
    "setup": setup_stage,
    "validate": validate_stage,
    "teardown": teardown_stage,
}


def run_stage(context: ScenarioContext, stage: str, result: ScenarioResult) -> bool:
    """Run one named stage if its toggle allows. Returns True if it ran."""
    stage_fn = STAGE_FUNCTIONS[stage]

    def _run() -> None:
        result.stages_run.append(stage)
        stage_fn(context, result)

    return test_structure.run_test_stage(stage, _run, context.toggles)


class ScenarioOrchestrator:
    """Run setup and validate, then teardown no matter how they ended."""

    def __init__(self, context: ScenarioContext):
        self.context = context
        self.result = ScenarioResult()

    @classmethod
    def from_fixture(
        cls,
        root_folder: Path | str,
        config: HarnessConfig,
        toggles: StageToggles,
        **kwargs: Any,
    ) -> "ScenarioOrchestrator":
        """Stage the Terraform code (copied to a temp dir unless a stage is skipped)."""
        folder = test_structure.copy_terraform_folder_to_temp(
            root_folder, config.terraform_dir, toggles=toggles
        )
        temp_root = None
        if folder != (Path(root_folder) / config.terraform_dir).resolve():
            temp_root = test_structure.temp_copy_root(folder, config.terraform_dir)

        context = ScenarioContext(
            terraform_folder=folder, config=config, toggles=toggles, temp_root=temp_root, **kwargs
        )
        return cls(context)

    def run(self) -> ScenarioResult:
        """Run the scenario.

        Returns:
            ScenarioResult (check .success)

        Raises:
            Whatever setup or validate raised, after teardown has run
        """
        result = self.result = ScenarioResult()

        try:
            run_stage(self.context, "setup", result)
            run_stage(self.context, "validate", result)
        except Exception as e:
            result.failures.append(f"{type(e).__name__}: {e}")
            raise
        finally:
            run_stage(self.context, "teardown", result)

        return result


__all__ = [
    "STAGE_FUNCTIONS",
    "ScenarioContext",
    "ScenarioOrchestrator",
    "ScenarioResult",
    "configure_terraform_options",
    "run_stage",
    "setup_stage",
    "teardown_stage",
    "unique_id",
    "validate_stage",
]
