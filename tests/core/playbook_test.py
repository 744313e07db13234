# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tests for the ansible-playbook provider."""

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional
import pytest
from pytest_mock import MockerFixture
from infraplan.core.exceptions import ProviderError
from infraplan.core.execution.playbook import (
    PLAYBOOK_RESOURCE_TYPE,
    PlaybookProvider,
    describe_returncode,
)
from infraplan.core.models.plan import ActionType, ChangeAction
from infraplan.core.models.resource import ResourceDefinition, ResourceState

IDENTITY = f"{PLAYBOOK_RESOURCE_TYPE}.layout"


def _action(
    attributes: Dict[str, Any],
    action: ActionType = ActionType.CREATE,
    before: Optional[ResourceState] = None,
) -> ChangeAction:
    return ChangeAction(
        action=action,
        identity=IDENTITY,
        resource_type=PLAYBOOK_RESOURCE_TYPE,
        name="layout",
        before=before,
        after=ResourceDefinition(type=PLAYBOOK_RESOURCE_TYPE, name="layout", attributes=attributes),
    )


@pytest.fixture
def playbook_dir(temp_dir: Path) -> Path:
    directory = temp_dir / "playbooks"
    directory.mkdir()
    (directory / "layout.yml").write_text("- hosts: all\n  tasks: []\n", encoding="utf-8")
    return directory


@pytest.fixture
def popen(mocker: MockerFixture):
    """
    Patch Popen with a process that succeeds.
    """
    mock_popen = mocker.patch("infraplan.core.execution.playbook.subprocess.Popen")
    process = mock_popen.return_value
    process.returncode = 0
    process.communicate.return_value = ("PLAY RECAP ok=3", "")
    return mock_popen


class TestPlaybookProvider:
    """
    Tests for PlaybookProvider.apply.
    """

    def test_runs_playbook(self, playbook_dir: Path, popen) -> None:
        """
        A create runs ansible-playbook with inventory and extra vars.
        """
        provider = PlaybookProvider(playbook_dir=playbook_dir)
        state = provider.apply(
            _action(
                {
                    "playbook": "layout.yml",
                    "inventory": ["10.10.1.4"],
                    "extra_vars": {"hana_volumes": [{"lun": 0}]},
                }
            )
        )

        cmd = popen.call_args.args[0]
        assert cmd[:2] == ["ansible-playbook", str((playbook_dir / "layout.yml").resolve())]
        assert cmd[cmd.index("-i") + 1] == "10.10.1.4,"
        extra_vars = json.loads(cmd[cmd.index("-e") + 1])
        assert extra_vars == {"hana_volumes": [{"lun": 0}], "resource_identity": IDENTITY}
        env = popen.call_args.kwargs["env"]
        assert env["ANSIBLE_CONFIG"] == str(playbook_dir / "ansible.cfg")

        assert state is not None
        assert state.attributes["playbook_path"] == str((playbook_dir / "layout.yml").resolve())
        assert state.attributes["id"]
        assert state.inputs["playbook"] == "layout.yml"

    def test_inventory_path(self, playbook_dir: Path, popen) -> None:
        """
        A string inventory is passed through unchanged.
        """
        PlaybookProvider(playbook_dir=playbook_dir).apply(
            _action({"playbook": "layout.yml", "inventory": "hosts.ini"})
        )

        cmd = popen.call_args.args[0]
        assert cmd[cmd.index("-i") + 1] == "hosts.ini"

    def test_update_keeps_id(self, playbook_dir: Path, popen) -> None:
        """
        Re-running a playbook for an update keeps the resource id.
        """
        before = ResourceState(
            identity=IDENTITY,
            type=PLAYBOOK_RESOURCE_TYPE,
            name="layout",
            attributes={"id": "run-1"},
        )
        state = PlaybookProvider(playbook_dir=playbook_dir).apply(
            _action({"playbook": "layout.yml"}, ActionType.UPDATE, before)
        )
        assert state.attributes["id"] == "run-1"

    def test_destroy_does_not_run(self, playbook_dir: Path, popen) -> None:
        """
        Destroy only drops the resource from state.
        """
        action = ChangeAction(
            action=ActionType.DESTROY,
            identity=IDENTITY,
            resource_type=PLAYBOOK_RESOURCE_TYPE,
            name="layout",
        )
        assert PlaybookProvider(playbook_dir=playbook_dir).apply(action) is None
        popen.assert_not_called()

    def test_playbook_attribute_required(self, playbook_dir: Path, popen) -> None:
        """
        A definition without a playbook fails.
        """
        with pytest.raises(ProviderError, match="'playbook' is required"):
            PlaybookProvider(playbook_dir=playbook_dir).apply(_action({}))

    def test_playbook_not_found(self, playbook_dir: Path, popen) -> None:
        """
        A playbook that does not exist fails before running anything.
        """
        with pytest.raises(ProviderError, match="Playbook not found"):
            PlaybookProvider(playbook_dir=playbook_dir).apply(_action({"playbook": "nope.yml"}))
        popen.assert_not_called()

    @pytest.mark.parametrize("playbook", ["../outside.yml", "/etc/outside.yml"])
    def test_playbook_outside_directory(self, playbook_dir: Path, popen, playbook: str) -> None:
        """
        A playbook path escaping the playbook directory is rejected.
        """
        (playbook_dir.parent / "outside.yml").write_text("- hosts: all\n", encoding="utf-8")

        with pytest.raises(ProviderError, match="is outside"):
            PlaybookProvider(playbook_dir=playbook_dir).apply(_action({"playbook": playbook}))
        popen.assert_not_called()

    def test_failed_run_reports_stderr(self, playbook_dir: Path, popen) -> None:
        """
        A non-zero exit raises ProviderError with the error output.
        """
        popen.return_value.returncode = 2
        popen.return_value.communicate.return_value = ("", "fatal: [10.10.1.4]: UNREACHABLE!")

        with pytest.raises(ProviderError) as exc_info:
            PlaybookProvider(playbook_dir=playbook_dir).apply(_action({"playbook": "layout.yml"}))

        assert "UNREACHABLE" in exc_info.value.message
        assert exc_info.value.details == {"return_code": 2}

    def test_timeout_kills_process(self, playbook_dir: Path, popen) -> None:
        """
        A run exceeding the timeout is killed and reported.
        """
        process = popen.return_value
        process.communicate.side_effect = [
            subprocess.TimeoutExpired(cmd="ansible-playbook", timeout=1),
            ("", ""),
        ]

        with pytest.raises(ProviderError, match="timed out after 1s"):
            PlaybookProvider(playbook_dir=playbook_dir, timeout=1).apply(
                _action({"playbook": "layout.yml"})
            )
        process.kill.assert_called_once()

    def test_logged_timeout_reaps_process(self, playbook_dir: Path, temp_dir: Path, popen) -> None:
        """
        A logged run that times out is killed and waited for.
        """
        process = popen.return_value
        process.wait.side_effect = [
            subprocess.TimeoutExpired(cmd="ansible-playbook", timeout=1),
            -9,
        ]

        provider = PlaybookProvider(playbook_dir=playbook_dir, log_dir=temp_dir / "logs", timeout=1)
        with pytest.raises(ProviderError, match="timed out after 1s"):
            provider.apply(_action({"playbook": "layout.yml"}))
        process.kill.assert_called_once()
        assert process.wait.call_count == 2
        assert process.wait.call_args.args == ()

    def test_missing_binary(self, playbook_dir: Path, popen) -> None:
        """
        A missing ansible-playbook binary is a provider error.
        """
        popen.side_effect = FileNotFoundError("ansible-playbook")

        with pytest.raises(ProviderError, match="Could not start ansible-playbook"):
            PlaybookProvider(playbook_dir=playbook_dir).apply(_action({"playbook": "layout.yml"}))

    def test_log_file_tail_on_failure(self, playbook_dir: Path, temp_dir: Path, popen) -> None:
        """
        With a log directory, failures include the tail of the run log.
        """
        log_dir = temp_dir / "logs"
        log_dir.mkdir()
        (log_dir / f"{IDENTITY}.log").write_text("TASK [lvg]\nfatal: no such device\n")
        popen.return_value.returncode = 1

        provider = PlaybookProvider(playbook_dir=playbook_dir, log_dir=log_dir)
        with pytest.raises(ProviderError) as exc_info:
            provider.apply(_action({"playbook": "layout.yml"}))

        assert "ansible-playbook exited with status 1 (error)" in exc_info.value.message
        assert "no such device" in exc_info.value.message
        assert exc_info.value.details["log_file"] == str(log_dir / f"{IDENTITY}.log")
        popen.return_value.wait.assert_called_once_with(timeout=3600)

    def test_read_echoes_state(self, playbook_dir: Path) -> None:
        """
        Reading a playbook resource echoes the stored attributes.
        """
        state = PlaybookProvider(playbook_dir=playbook_dir).read(IDENTITY, {"id": "run-1"})
        assert state.attributes == {"id": "run-1"}
        assert (state.type, state.name) == (PLAYBOOK_RESOURCE_TYPE, "layout")


class TestDescribeReturncode:
    """
    Tests for exit status descriptions.
    """

    @pytest.mark.parametrize(
        "returncode,expected",
        [
            (2, "ansible-playbook exited with status 2 (one or more hosts failed)"),
            (4, "ansible-playbook exited with status 4 (parser error)"),
            (42, "ansible-playbook exited with status 42"),
            (-9, "ansible-playbook killed by SIGKILL (out of memory or forced stop)"),
            (-1, "ansible-playbook killed by SIGHUP"),
        ],
    )
    def test_describe(self, returncode: int, expected: str) -> None:
        """
        Known ansible statuses and killing signals are named.
        """
        assert describe_returncode(returncode) == expected

    def test_long_log_keeps_whole_lines(
        self, playbook_dir: Path, temp_dir: Path, popen
    ) -> None:
        """
        The tail of a long run log starts at a line boundary.
        """
        log_dir = temp_dir / "logs"
        log_dir.mkdir()
        lines = [f"TASK [step {i}] " + "." * 40 for i in range(200)]
        (log_dir / f"{IDENTITY}.log").write_text("\n".join(lines) + "\n")
        popen.return_value.returncode = 2

        provider = PlaybookProvider(playbook_dir=playbook_dir, log_dir=log_dir)
        with pytest.raises(ProviderError) as exc_info:
            provider.apply(_action({"playbook": "layout.yml"}))

        output = exc_info.value.message.split(" | last output: ", 1)[1]
        assert output.startswith("TASK [step ")
        assert output.endswith(lines[-1].strip())
        assert len(output) <= 2000
