# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Provisioning of the shared network the managed services attach to.
"""
import json
from typing import Dict, List, Optional

from ..exceptions import NetworkError, ProcessError
from ..RUNNERS.command_runner import CommandRunner
from ..UTILS.output import LogSink

ALREADY_EXISTS = "already exists"
NOT_FOUND_MARKERS = ("not found", "no such network")


class NetworkManager:
    """
    Ensures a single named docker network exists with the expected labels.
    """

    def __init__(self, runner: CommandRunner, docker: str = "docker", sink: Optional[LogSink] = None):
        """
        Initializes the network manager.

        :param runner: Executes docker commands.
        :param docker: Docker binary.
        :param sink: Receives warnings.
        """
        self.runner = runner
        self.docker = docker
        self.sink = sink or print

    def _docker(self, *args: str):
        return self.runner.run(self.docker, list(args), silent=True)

    def list_networks(self) -> List[str]:
        """
        Returns the names of all existing networks.
        """
        try:
            result = self._docker("network", "ls", "--format", "{{.Name}}")
        except ProcessError as e:
            raise NetworkError("*", f"cannot list networks: {e}") from e
        return [line.strip() for line in result.lines]

    def network_exists(self, name: str) -> bool:
        return name in self.list_networks()

    def get_labels(self, name: str) -> Dict[str, str]:
        """
        Returns the labels of an existing network.
        """
        try:
            result = self._docker("network", "inspect", name, "--format", "{{json .Labels}}")
        except ProcessError as e:
            raise NetworkError(name, f"cannot inspect network: {e}") from e
        return json.loads(result.stdout.strip() or "null") or {}

    def attached_containers(self, name: str) -> List[str]:
        """
        Returns the names of the containers currently attached to a network.
        Docker only lists running containers here.
        """
        try:
            result = self._docker("network", "inspect", name, "--format", "{{json .Containers}}")
        except ProcessError as e:
            raise NetworkError(name, f"cannot inspect network: {e}") from e
        containers = json.loads(result.stdout.strip() or "null") or {}
        return sorted(info.get("Name", cid) for cid, info in containers.items())

    def create_network(self, name: str, labels: Dict[str, str]):
        """
        Creates a network. Losing a creation race to someone else is fine.
        """
        args = ["network", "create"]
        for key, value in sorted(labels.items()):
            args += ["--label", f"{key}={value}"]
        args.append(name)
        try:
            self._docker(*args)
        except ProcessError as e:
            if ALREADY_EXISTS in e.stderr.lower():
                return
            raise NetworkError(name, f"cannot create network: {e}") from e

    def remove_network(self, name: str) -> bool:
        """
        Removes a network.

        :return: True if removed, False if it did not exist.
        """
        try:
            self._docker("network", "rm", name)
        except ProcessError as e:
            lowered = e.stderr.lower()
            if any(marker in lowered for marker in NOT_FOUND_MARKERS):
                return False
            raise NetworkError(name, f"cannot remove network: {e}") from e
        return True

    def ensure_network(self, name: str, labels: Dict[str, str]):
        """
        Makes sure ``name`` exists and carries ``labels``. Idempotent.

        A network with stale labels is recreated, unless containers are
        attached to it, in which case it is kept and a warning is emitted.

        :raises NetworkError: On unexpected runtime failures.
        """
        if not self.network_exists(name):
            self.create_network(name, labels)
            return

        current = self.get_labels(name)
        if all(current.get(key) == value for key, value in labels.items()):
            return

        attached = self.attached_containers(name)
        if attached:
            self.sink(
                f"Warning: network {name} has unexpected labels but is in use by "
                f"{', '.join(attached)}; keeping it."
            )
            return

        self.sink(f"Recreating network {name} with updated labels...")
        self.remove_network(name)
        self.create_network(name, labels)
