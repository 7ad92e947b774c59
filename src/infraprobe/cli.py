"""infraprobe command line interface.

Commands:
    run      Stage the Terraform fixture and run setup, validate, teardown
    stage    Run a single stage against an already staged Terraform folder
    config   Manage ~/.infraprobe/config.toml
"""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from infraprobe import __version__
from infraprobe.config_manager import ConfigError, ConfigManager, HarnessConfig
from infraprobe.scenario import (
    ScenarioContext,
    ScenarioOrchestrator,
    ScenarioResult,
    run_stage,
)
from infraprobe.test_structure import STAGES, StageToggles

logger = logging.getLogger(__name__)

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )


def _load_config(config_path: str | None) -> HarnessConfig:
    try:
        return ConfigManager.load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def print_summary(result: ScenarioResult) -> None:
    """Print stage and check results as a table."""
    table = Table(title="infraprobe results")
    table.add_column("Check", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Status")

    for outcome in result.outcomes:
        status = "[green]PASS[/green]" if outcome.success else "[red]FAIL[/red]"
        table.add_row(outcome.description, str(outcome.attempts), status)

    console.print()
    console.print(f"[bold]Stages run:[/bold] {', '.join(result.stages_run) or 'none'}")
    if result.outcomes:
        console.print(table)

    for failure in result.failures:
        console.print(f"[red]✗[/red] {failure}")

    if result.success:
        console.print("[bold green]Scenario passed[/bold green]")
    else:
        console.print("[bold red]Scenario failed[/bold red]")


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.version_option(version=__version__)
def main() -> None:
    """infraprobe - provision with Terraform, verify over SSH and Ansible.

    \b
    EXAMPLES:
        # Full run: copy ./terraform to a temp dir, apply, check, destroy
        $ infraprobe run

    \b
        # Keep the infrastructure around between runs
        $ SKIP_teardown=1 infraprobe run
        $ SKIP_setup=1 SKIP_teardown=1 infraprobe run
        $ SKIP_setup=1 SKIP_validate=1 infraprobe run

    \b
    CONFIGURATION:
        Config file: ~/.infraprobe/config.toml
        Retry tuning: INFRAPROBE_RETRY_SSH_MAX_ATTEMPTS, INFRAPROBE_RETRY_SSH_DELAY
    """


@main.command()
@click.option(
    "--root",
    "root_folder",
    default=".",
    show_default=True,
    type=click.Path(exists=True, file_okay=False),
    help="Folder containing the Terraform code",
)
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option("--skip-setup", is_flag=True, help="Do not provision")
@click.option("--skip-validate", is_flag=True, help="Do not run the checks")
@click.option("--skip-teardown", is_flag=True, help="Leave the infrastructure running")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def run(
    root_folder: str,
    config_path: str | None,
    skip_setup: bool,
    skip_validate: bool,
    skip_teardown: bool,
    verbose: bool,
) -> None:
    """Run setup, validate and teardown.

    Teardown runs even when setup or validate fail.
    """
    _setup_logging(verbose)
    config = _load_config(config_path)

    env_toggles = StageToggles.from_environment()
    toggles = StageToggles(
        run_setup=env_toggles.run_setup and not skip_setup,
        run_validate=env_toggles.run_validate and not skip_validate,
        run_teardown=env_toggles.run_teardown and not skip_teardown,
    )

    try:
        orchestrator = ScenarioOrchestrator.from_fixture(root_folder, config, toggles)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e

    try:
        orchestrator.run()
    except Exception as e:
        logger.debug("Scenario aborted", exc_info=True)
        console.print(f"[red]Scenario aborted:[/red] {e}")

    print_summary(orchestrator.result)
    sys.exit(0 if orchestrator.result.success else 1)


@main.command()
@click.argument("stage_name", type=click.Choice(STAGES))
@click.option(
    "--terraform-dir",
    "terraform_dir",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Staged Terraform folder (holds .test-data from earlier stages)",
)
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def stage(stage_name: str, terraform_dir: str, config_path: str | None, verbose: bool) -> None:
    """Run a single stage (setup, validate or teardown) in place."""
    _setup_logging(verbose)
    config = _load_config(config_path)

    context = ScenarioContext(
        terraform_folder=Path(terraform_dir).resolve(),
        config=config,
        toggles=StageToggles.only(stage_name),
    )
    result = ScenarioResult()

    try:
        run_stage(context, stage_name, result)
    except Exception as e:
        logger.debug(f"Stage {stage_name} aborted", exc_info=True)
        result.failures.append(f"{type(e).__name__}: {e}")

    print_summary(result)
    sys.exit(0 if result.success else 1)


@main.group()
def config() -> None:
    """Manage infraprobe configuration."""


@config.command(name="init")
@click.option("--path", "path", help="Write to this file instead of the default", type=click.Path())
@click.option("--region", help="AWS region", type=str)
@click.option("--ssh-user", help="Remote SSH user", type=str)
def config_init(path: str | None, region: str | None, ssh_user: str | None) -> None:
    """Write a config file with default values."""
    harness_config = HarnessConfig()
    if region:
        harness_config.aws_region = region
    if ssh_user:
        harness_config.ssh_user = ssh_user
        harness_config.ansible_user = ssh_user

    try:
        written = ConfigManager.save_config(harness_config, path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Wrote {written}")


@config.command(name="show")
@click.option("--config", "config_path", help="Config file path", type=click.Path())
def config_show(config_path: str | None) -> None:
    """Show the effective configuration."""
    harness_config = _load_config(config_path)
    for key, value in harness_config.to_dict().items():
        click.echo(f"{key} = {value}")


if __name__ == "__main__":
    main()
