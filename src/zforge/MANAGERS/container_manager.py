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
Lifecycle and inspection of the managed containers through the docker CLI
and Docker Compose.
"""
import json
from typing import List, Optional, Sequence

from ..exceptions import ProcessError
from ..MODELS.forge_config import ForgeConfig
from ..MODELS.orchestration_result import ContainerObservation
from ..RUNNERS.command_runner import CommandResult, CommandRunner
from ..RUNNERS.retry_policy import RetryPolicy

NOT_FOUND_MARKERS = ("no such object", "no such container")


def _is_missing(error: ProcessError) -> bool:
    lowered = error.stderr.lower()
    return any(marker in lowered for marker in NOT_FOUND_MARKERS)


class ContainerManager:
    """
    Starts, stops, removes and inspects containers.

    Compose commands that change state go through the retry policy;
    inspection is read-only and never retried here.
    """

    def __init__(self, config: ForgeConfig, runner: CommandRunner, retry: Optional[RetryPolicy] = None):
        """
        :param config: Orchestration settings (compose file, binaries, project name).
        :param runner: Executes docker commands.
        :param retry: Policy for state-changing commands; no retries when omitted.
        """
        self.config = config
        self.runner = runner
        self.retry = retry or RetryPolicy(retries=0, min_delay=0)

    @property
    def docker(self) -> str:
        return self.config.docker_binary

    def inspect(self, container_name: str) -> ContainerObservation:
        """
        Reads the runtime state of a container.

        :param container_name: Container to inspect.
        :return: Observation; ``exists`` is False when docker does not know the name.
        :raises ProcessError: For failures other than "no such container", and
            when docker answers with output that cannot be read.
        """
        try:
            result = self.runner.run(
                self.docker, ["inspect", "--type", "container", container_name], silent=True
            )
        except ProcessError as e:
            if _is_missing(e):
                return ContainerObservation(container_name=container_name, exists=False)
            raise
        try:
            return self._parse_inspect(container_name, result.stdout)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            # json and pydantic validation errors are both ValueErrors.
            raise ProcessError(
                result.command, result.exit_code, f"unreadable docker inspect output: {e}"
            ) from e

    @staticmethod
    def _parse_inspect(container_name: str, output: str) -> ContainerObservation:
        data = json.loads(output or "[]")
        if not data:
            return ContainerObservation(container_name=container_name, exists=False)

        state = data[0].get("State") or {}
        health = state.get("Health") or {}
        running = bool(state.get("Running"))
        health_status = health.get("Status")

        if health_status:
            healthy = health_status == "healthy"
        else:
            # No health check declared: running is the best we can say.
            healthy = running

        return ContainerObservation(
            container_name=container_name,
            exists=True,
            running=running,
            healthy=healthy,
            exit_code=state.get("ExitCode"),
            status=state.get("Status"),
            health_status=health_status,
        )

    def compose(self, args: Sequence[str], silent: bool = True) -> CommandResult:
        """
        Runs a Docker Compose command against the configured compose file.
        """
        command, *prefix = self.config.compose_command
        compose_args = [*prefix, "-f", self.config.compose_path]
        if self.config.project_name:
            compose_args += ["-p", self.config.project_name]
        compose_args += list(args)

        return self.retry.call(
            lambda: self.runner.run(
                command,
                compose_args,
                silent=silent,
                timeout=self.config.command_timeout,
                cwd=self.config.project_root,
            )
        )

    def compose_up(self, services: Sequence[str] = (), profiles: Sequence[str] = ()):
        """Starts the given compose services (all when empty) detached."""
        args: List[str] = []
        for profile in profiles:
            args += ["--profile", profile]
        args += ["up", "-d", *services]
        self.compose(args)

    def compose_down(self):
        """Stops and removes every container of the compose project. Volumes are kept."""
        self.compose(["down", "--remove-orphans"])

    def remove_container(self, container_name: str) -> bool:
        """
        Force-removes a container.

        :return: True if a container was removed, False if none existed.
        """
        try:
            self.runner.run(self.docker, ["rm", "-f", container_name], silent=True)
        except ProcessError as e:
            if _is_missing(e):
                return False
            raise
        return True

    def logs(self, container_name: str, tail: int = 50) -> List[str]:
        """
        Returns the last ``tail`` log lines of a container, or an empty
        list when they cannot be read.
        """
        try:
            result = self.runner.run(
                self.docker, ["logs", "--tail", str(tail), container_name], silent=True
            )
        except ProcessError:
            return []
        # docker logs writes the container's stderr to our stderr.
        return [line for line in (result.stdout + result.stderr).splitlines() if line.strip()]
