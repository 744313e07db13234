# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Configuration-management hook backed by ``ansible-playbook``.

A playbook run is an ordinary resource of type ``ansible_playbook``. Its
attributes are resolved from the resources it references before it runs,
so a playbook that lays out HANA disks receives the VM's assigned address
once the NIC and VM are committed.
"""

import json
import os
import signal
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4
from infraplan.core.exceptions import ProviderError
from infraplan.core.execution.providers import state_from_action, state_from_attributes
from infraplan.core.models.plan import ActionType, ChangeAction
from infraplan.core.models.resource import ResourceState
from infraplan.core.observability import create_execution_event, get_logger

logger = get_logger(__name__)

PLAYBOOK_RESOURCE_TYPE = "ansible_playbook"

# Changing any of these re-runs the playbook as a fresh resource.
PLAYBOOK_REPLACE_ON_CHANGE = ("playbook", "inventory")

OUTPUT_TAIL_CHARS = 2000

# Documented ansible-playbook exit statuses.
_ANSIBLE_STATUS = {
    1: "error",
    2: "one or more hosts failed",
    3: "one or more hosts unreachable",
    4: "parser error",
    5: "bad or incomplete options",
    99: "interrupted",
    250: "unexpected error",
}

_SIGNAL_HINTS = {
    signal.SIGKILL: "out of memory or forced stop",
    signal.SIGTERM: "stopped by shutdown",
    signal.SIGSEGV: "crashed",
}


def describe_returncode(returncode: int) -> str:
    """Describe how an ansible-playbook process ended.

    A negative code is the signal that killed the process.
    """
    if returncode >= 0:
        status = _ANSIBLE_STATUS.get(returncode)
        suffix = f" ({status})" if status else ""
        return f"ansible-playbook exited with status {returncode}{suffix}"
    try:
        name = signal.Signals(-returncode).name
    except ValueError:
        name = f"signal {-returncode}"
    hint = _SIGNAL_HINTS.get(-returncode)
    return f"ansible-playbook killed by {name}" + (f" ({hint})" if hint else "")


def _log_tail(path: Path, limit: int = OUTPUT_TAIL_CHARS) -> str:
    """Whole trailing lines of a run log, at most ``limit`` characters."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    if len(text) <= limit:
        return text.strip()
    return text[-limit:].partition("\n")[2].strip()


class PlaybookProvider:
    """Runs an Ansible playbook as the create or update of a resource.

    Recognised attributes:

    - ``playbook``: playbook file, relative to ``playbook_dir``
    - ``inventory``: inventory path, or a comma-separated host list
    - ``extra_vars``: mapping passed with ``-e`` as JSON

    Destroy only drops the resource from state; playbooks are not reversible.
    """

    def __init__(
        self,
        playbook_dir: Path | str = "playbooks",
        ansible_cfg: Optional[Path | str] = None,
        log_dir: Optional[Path | str] = None,
        timeout: float = 3600,
    ) -> None:
        """Initialize the provider.

        :param playbook_dir: Directory the ``playbook`` attribute is relative to
        :param ansible_cfg: ansible.cfg to run with, defaults to the one in ``playbook_dir``
        :param log_dir: Directory for per-resource run logs; output is
            captured in memory when omitted
        :param timeout: Seconds before a run is abandoned
        """
        self.playbook_dir = Path(playbook_dir)
        self.ansible_cfg = Path(ansible_cfg or self.playbook_dir / "ansible.cfg")
        self.log_dir = Path(log_dir) if log_dir else None
        self.timeout = timeout

    def apply(self, action: ChangeAction) -> Optional[ResourceState]:
        """Run the playbook for a create or update.

        :param action: Planned action with resolved attributes
        :returns: New state, or None for destroy
        :raises ProviderError: If the playbook is missing or the run fails
        """
        if action.action == ActionType.DESTROY.value:
            logger.info(f"Dropping {action.identity} from state; playbook runs are not reverted")
            return None
        if action.after is None:
            raise ProviderError(action.identity, f"no definition for {action.action}")

        attributes = action.after.attributes
        playbook = attributes.get("playbook")
        if not playbook:
            raise ProviderError(action.identity, "attribute 'playbook' is required")
        playbook_path = (self.playbook_dir / playbook).resolve()
        if not playbook_path.is_relative_to(self.playbook_dir.resolve()):
            raise ProviderError(
                action.identity, f"Playbook {playbook} is outside {self.playbook_dir}"
            )
        if not playbook_path.exists():
            raise ProviderError(action.identity, f"Playbook not found: {playbook_path}")

        cmd = self._build_command(action.identity, playbook_path, attributes)
        env = {"ANSIBLE_CONFIG": str(self.ansible_cfg)}

        logger.info(f"Running playbook {playbook} for {action.identity} ({action.action})")
        logger.event(
            create_execution_event(
                "command_exec",
                resource=action.identity,
                action=action.action,
            )
        )
        try:
            self._run(action.identity, cmd, env)
        except subprocess.TimeoutExpired:
            raise ProviderError(
                action.identity,
                f"Playbook run timed out after {self.timeout:.0f}s",
            )
        except OSError as e:
            raise ProviderError(action.identity, f"Could not start ansible-playbook: {e}") from e

        resource_id = None
        if action.action == ActionType.UPDATE.value and action.before:
            resource_id = action.before.attributes.get("id")
        return state_from_action(
            action,
            {
                "id": resource_id or str(uuid4()),
                "playbook_path": str(playbook_path),
                "last_run_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    def read(self, identity: str, attributes: Dict[str, Any]) -> ResourceState:
        """A playbook run has no remote object to observe; echo stored state."""
        return state_from_attributes(identity, attributes)

    def _build_command(
        self,
        identity: str,
        playbook_path: Path,
        attributes: Dict[str, Any],
    ) -> list[str]:
        """Assemble the ansible-playbook command line.

        :param identity: Resource identity
        :param playbook_path: Resolved playbook file
        :param attributes: Resolved resource attributes
        :returns: Command list for subprocess
        """
        cmd = ["ansible-playbook", str(playbook_path)]
        inventory = attributes.get("inventory")
        if isinstance(inventory, list):
            inventory = ",".join(str(host) for host in inventory) + ","
        if inventory:
            cmd.extend(["-i", str(inventory)])

        all_vars = dict(attributes.get("extra_vars") or {})
        all_vars["resource_identity"] = identity
        cmd.extend(["-e", json.dumps(all_vars, default=str)])
        return cmd

    def _run(self, identity: str, cmd: list[str], env: dict[str, str]) -> None:
        """Execute the playbook.

        Output goes to ``<log_dir>/<identity>.log`` when a log directory is
        configured and is captured in memory otherwise.

        :param identity: Resource identity, names the log file
        :param cmd: Command list for subprocess
        :param env: Extra environment variables
        :raises ProviderError: On a non-zero exit, with the tail of the output
        :raises subprocess.TimeoutExpired: After killing a run that overran
        """
        env = {**os.environ, **env}
        if self.log_dir is None:
            returncode, output = self._run_captured(cmd, env)
            details: Dict[str, Any] = {"return_code": returncode}
        else:
            log_path = self.log_dir / f"{identity}.log"
            returncode = self._run_logged(cmd, env, log_path)
            output = _log_tail(log_path) if returncode else ""
            details = {"return_code": returncode, "log_file": str(log_path)}

        if returncode != 0:
            message = describe_returncode(returncode)
            if output:
                message += f" | last output: {output}"
            raise ProviderError(identity, message, details=details)

    def _run_logged(self, cmd: list[str], env: dict[str, str], log_path: Path) -> int:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as log:
            proc = subprocess.Popen(cmd, stdout=log, stderr=subprocess.STDOUT, text=True, env=env)
            try:
                proc.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
                raise
        return proc.returncode

    def _run_captured(self, cmd: list[str], env: dict[str, str]) -> tuple[int, str]:
        """Run with output in memory; error output is preferred for the tail."""
        proc = subprocess.Popen(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, env=env
        )
        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            raise
        output = stderr or stdout or ""
        return proc.returncode, output[-OUTPUT_TAIL_CHARS:].strip()
