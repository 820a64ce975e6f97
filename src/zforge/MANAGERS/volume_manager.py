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
Removal of the named volumes that hold the services' persistent data.
"""
from typing import Iterable, List, Optional

from ..exceptions import ProcessError
from ..RUNNERS.command_runner import CommandRunner
from ..UTILS.output import LogSink

NOT_FOUND_MARKERS = ("no such volume", "not found")


class VolumeManager:
    """
    Manages docker named volumes of the stack.
    """

    def __init__(self, runner: CommandRunner, docker: str = "docker", sink: Optional[LogSink] = None):
        self.runner = runner
        self.docker = docker
        self.sink = sink or print

    def list_volumes(self) -> List[str]:
        """
        Returns the names of all docker volumes.
        """
        result = self.runner.run(self.docker, ["volume", "ls", "--format", "{{.Name}}"], silent=True)
        return [line.strip() for line in result.lines]

    def remove_volume(self, name: str) -> bool:
        """
        Removes a volume.

        :param name: Volume name.
        :return: True if removed, False if it did not exist.
        :raises ProcessError: If docker refuses for another reason (e.g. in use).
        """
        try:
            self.runner.run(self.docker, ["volume", "rm", name], silent=True)
        except ProcessError as e:
            lowered = e.stderr.lower()
            if any(marker in lowered for marker in NOT_FOUND_MARKERS):
                return False
            raise
        return True

    def remove_volumes(self, names: Iterable[str]) -> List[str]:
        """
        Removes every named volume, skipping those already gone.

        :return: Names of the volumes actually removed.
        """
        removed = []
        for name in names:
            if self.remove_volume(name):
                self.sink(f"Removed volume {name}")
                removed.append(name)
        return removed
