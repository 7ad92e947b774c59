"""Unit tests for remote command verifiers."""

from contextlib import contextmanager
from unittest.mock import MagicMock, Mock, patch

import pytest

from infraprobe.ansible_runner import AnsibleError, AnsibleResult
from infraprobe.aws_keypair import KeyPair
from infraprobe.retry_config import RetryPolicy
from infraprobe.ssh_agent import SSHAgentError
from infraprobe.ssh_connector import SSHClientNotFoundError, SSHCommandError
from infraprobe.verifiers import (
    VerificationError,
    ansible_ping_success_text,
    check_ansible_ping,
    check_ssh_agent_to_host,
    check_ssh_error_command,
    check_ssh_to_host,
    echo_command,
    error_command,
)

KEY_PAIR = KeyPair(public_key="ssh-rsa AAAA", private_key="PRIVATE")
HOST = "10.0.0.5"
EXPECTED = "Hello, World"


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, delay=15.0, description=f"SSH to public host {HOST}")


@pytest.fixture
def sleep():
    return Mock()


class TestCommands:
    def test_echo_command(self):
        assert echo_command(EXPECTED) == "echo -n 'Hello, World'"

    def test_error_command(self):
        assert error_command(EXPECTED) == "echo -n 'Hello, World' && exit 1"


class TestCheckSSHToHost:
    """Tests for check_ssh_to_host()."""

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_success_with_trimmed_output(self, mock_check, policy, sleep):
        mock_check.return_value = "Hello, World\n"

        outcome = check_ssh_to_host(HOST, KEY_PAIR, policy, sleep=sleep)

        assert outcome.success is True
        assert outcome.attempts == 1
        host, command = mock_check.call_args.args
        assert host.hostname == HOST
        assert host.user == "centos"
        assert host.private_key == "PRIVATE"
        assert command == "echo -n 'Hello, World'"

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_retries_connection_errors(self, mock_check, policy, sleep):
        mock_check.side_effect = [SSHCommandError("refused", exit_code=255), EXPECTED]

        outcome = check_ssh_to_host(HOST, KEY_PAIR, policy, sleep=sleep)

        assert outcome.success is True
        assert outcome.attempts == 2
        sleep.assert_called_once_with(15.0)

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_wrong_output_exhausts_retries(self, mock_check, policy, sleep):
        mock_check.return_value = "Goodbye"

        with pytest.raises(VerificationError) as exc_info:
            check_ssh_to_host(HOST, KEY_PAIR, policy, sleep=sleep)

        outcome = exc_info.value.outcome
        assert outcome.success is False
        assert outcome.attempts == 3
        assert mock_check.call_count == 3
        assert "Goodbye" in outcome.error
        assert HOST in str(exc_info.value)

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_missing_ssh_client_stops_after_one_attempt(self, mock_check, policy, sleep):
        mock_check.side_effect = SSHClientNotFoundError("ssh not found")

        with pytest.raises(VerificationError, match="ssh not found") as exc_info:
            check_ssh_to_host(HOST, KEY_PAIR, policy, sleep=sleep)

        assert mock_check.call_count == 1
        assert exc_info.value.outcome.attempts == 1
        sleep.assert_not_called()

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_custom_user_and_text(self, mock_check, policy, sleep):
        mock_check.return_value = "pong"

        check_ssh_to_host(HOST, KEY_PAIR, policy, user="ubuntu", expected_text="pong", sleep=sleep)

        host, command = mock_check.call_args.args
        assert host.user == "ubuntu"
        assert command == "echo -n 'pong'"


class TestCheckSSHErrorCommand:
    """Tests for check_ssh_error_command()."""

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_nonzero_exit_with_expected_output_succeeds(self, mock_check, policy, sleep):
        mock_check.side_effect = SSHCommandError("exit 1", stdout=EXPECTED, exit_code=1)

        outcome = check_ssh_error_command(HOST, KEY_PAIR, policy, sleep=sleep)

        assert outcome.success is True
        assert outcome.output == EXPECTED
        assert mock_check.call_args.args[1] == "echo -n 'Hello, World' && exit 1"

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_nonzero_exit_with_other_output_retries(self, mock_check, policy, sleep):
        mock_check.side_effect = SSHCommandError("exit 1", stdout="something else", exit_code=1)

        with pytest.raises(VerificationError) as exc_info:
            check_ssh_error_command(HOST, KEY_PAIR, policy, sleep=sleep)

        assert mock_check.call_count == 3
        assert "something else" in exc_info.value.outcome.error

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_zero_exit_fails_regardless_of_output(self, mock_check, policy, sleep):
        mock_check.return_value = EXPECTED

        with pytest.raises(VerificationError) as exc_info:
            check_ssh_error_command(HOST, KEY_PAIR, policy, sleep=sleep)

        assert mock_check.call_count == 3
        assert "return an error but got none" in exc_info.value.outcome.error

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_missing_ssh_client_is_not_retried(self, mock_check, policy, sleep):
        mock_check.side_effect = SSHClientNotFoundError("ssh not found")

        with pytest.raises(VerificationError, match="ssh not found"):
            check_ssh_error_command(HOST, KEY_PAIR, policy, sleep=sleep)

        assert mock_check.call_count == 1

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_recovers_after_unreachable_host(self, mock_check, policy, sleep):
        mock_check.side_effect = [
            SSHCommandError("Connection refused", exit_code=255),
            SSHCommandError("exit 1", stdout=EXPECTED + "  ", exit_code=1),
        ]

        outcome = check_ssh_error_command(HOST, KEY_PAIR, policy, sleep=sleep)

        assert outcome.success is True
        assert outcome.attempts == 2


class TestCheckSSHAgentToHost:
    """Tests for check_ssh_agent_to_host()."""

    @pytest.fixture
    def fake_agent(self):
        agent = MagicMock()
        agent.stopped = False

        @contextmanager
        def fake_running_agent(key_pair):
            assert key_pair is KEY_PAIR
            try:
                yield agent
            finally:
                agent.stopped = True

        with patch("infraprobe.verifiers.running_agent", side_effect=fake_running_agent):
            yield agent

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_success_uses_agent_and_stops_it(self, mock_check, fake_agent, policy, sleep):
        mock_check.return_value = EXPECTED

        outcome = check_ssh_agent_to_host(HOST, KEY_PAIR, policy, sleep=sleep)

        assert outcome.success is True
        host = mock_check.call_args.args[0]
        assert host.agent is fake_agent
        assert host.agent_public_key == KEY_PAIR.public_key
        assert host.private_key is None
        assert fake_agent.stopped is True

    @patch("infraprobe.verifiers.check_ssh_command")
    def test_agent_stopped_after_failure(self, mock_check, fake_agent, policy, sleep):
        mock_check.side_effect = SSHCommandError("Permission denied", exit_code=255)

        with pytest.raises(VerificationError):
            check_ssh_agent_to_host(HOST, KEY_PAIR, policy, sleep=sleep)

        assert fake_agent.stopped is True

    def test_agent_start_failure_is_verification_error(self, policy, sleep):
        with patch(
            "infraprobe.verifiers.running_agent", side_effect=SSHAgentError("no ssh-agent")
        ), pytest.raises(VerificationError, match="no ssh-agent"):
            check_ssh_agent_to_host(HOST, KEY_PAIR, policy, sleep=sleep)


class TestAnsiblePingSuccessText:
    def test_literal_for_host(self):
        assert ansible_ping_success_text("10.0.0.5") == (
            '10.0.0.5 | SUCCESS => {"ansible_facts": '
            '{"discovered_interpreter_python": "/usr/libexec/platform-python"}, '
            '"changed": false, "ping": "pong"}'
        )

    def test_custom_interpreter(self):
        assert '"/usr/bin/python3"' in ansible_ping_success_text("h", "/usr/bin/python3")


class TestCheckAnsiblePing:
    """Tests for check_ansible_ping()."""

    @patch("infraprobe.verifiers.run_ping")
    def test_exact_output_succeeds(self, mock_ping, tmp_path):
        mock_ping.return_value = AnsibleResult(
            stdout=ansible_ping_success_text(HOST), stderr="", exit_code=0
        )

        outcome = check_ansible_ping(HOST, working_dir=tmp_path)

        assert outcome.success is True
        assert outcome.attempts == 1
        inventory, user = mock_ping.call_args.args
        assert user == "centos"
        assert inventory.parent == tmp_path
        assert inventory.name.startswith("hosts")

    @patch("infraprobe.verifiers.run_ping")
    def test_trailing_whitespace_fails_without_retry(self, mock_ping, tmp_path):
        mock_ping.return_value = AnsibleResult(
            stdout=ansible_ping_success_text(HOST) + "\n", stderr="", exit_code=0
        )

        outcome = check_ansible_ping(HOST, working_dir=tmp_path)

        assert outcome.success is False
        assert mock_ping.call_count == 1

    @patch("infraprobe.verifiers.run_ping")
    def test_inventory_contents_and_removal(self, mock_ping, tmp_path):
        seen = {}

        def fake_ping(inventory, user, working_dir="."):
            seen["path"] = inventory
            seen["text"] = inventory.read_text()
            return AnsibleResult(stdout="UNREACHABLE", stderr="", exit_code=4)

        mock_ping.side_effect = fake_ping

        outcome = check_ansible_ping(HOST, working_dir=tmp_path)

        assert outcome.success is False
        assert "exit status 4" in outcome.error
        assert seen["text"] == "[all]\n10.0.0.5"
        assert not seen["path"].exists()
        assert list(tmp_path.iterdir()) == []

    @patch("infraprobe.verifiers.run_ping")
    def test_tool_error_reported_and_inventory_removed(self, mock_ping, tmp_path):
        mock_ping.side_effect = AnsibleError("ansible not found")

        outcome = check_ansible_ping(HOST, working_dir=tmp_path)

        assert outcome.success is False
        assert "ansible not found" in outcome.error
        assert list(tmp_path.iterdir()) == []
