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
Readiness probing: waiting for containers to reach a condition, and
one-shot readiness checks for services.
"""
import time
from dataclasses import dataclass
from typing import Callable

from ..exceptions import ProbeFailed, ProbeTimeout, ProcessError
from ..MODELS.orchestration_result import ContainerObservation
from ..MODELS.service_descriptor import CommandProbe, PortProbe, ReadinessCondition, ServiceDescriptor
from ..RUNNERS.command_runner import CommandRunner
from ..UTILS.port_finder import is_port_open
from .container_manager import ContainerManager


@dataclass
class ProbeOutcome:
    """Result of running a readiness probe once."""

    ok: bool
    detail: str = ""


class ReadinessProber:
    """
    Polls container state until a condition holds, with capped backoff
    between polls and a hard timeout. Never changes container state.
    """

    def __init__(
        self,
        containers: ContainerManager,
        runner: CommandRunner,
        max_poll_interval: float = 5.0,
        backoff: float = 1.5,
        probe_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the prober.

        Args:
            containers: Used for read-only inspection.
            runner: Runs command probes.
            max_poll_interval: Upper bound for the delay between polls.
            backoff: Factor the delay grows by after each unsuccessful poll.
            probe_timeout: Seconds a single command or port probe may take.
            clock: Monotonic time source.
            sleep: Used to wait between polls.
        """
        self.containers = containers
        self.runner = runner
        self.max_poll_interval = max_poll_interval
        self.backoff = backoff
        self.probe_timeout = probe_timeout
        self.clock = clock
        self.sleep = sleep

    def wait_until(
        self,
        container_name: str,
        condition: ReadinessCondition,
        timeout: float,
        poll_interval: float = 2.0,
    ) -> ContainerObservation:
        """
        Blocks until ``container_name`` satisfies ``condition``.

        Args:
            container_name: Container to watch.
            condition: HEALTHY or EXITED_ZERO.
            timeout: Seconds to wait in total.
            poll_interval: Delay before the second poll.

        Returns:
            The observation that satisfied the condition.

        Raises:
            ProbeFailed: The container reached a terminal failure state.
            ProbeTimeout: The condition did not hold within ``timeout``.
        """
        start = self.clock()
        interval = poll_interval
        ceiling = max(self.max_poll_interval, poll_interval)

        while True:
            observation = self.containers.inspect(container_name)
            if self.satisfies(observation, condition):
                return observation

            if observation.exited_with_failure or (
                condition is ReadinessCondition.HEALTHY
                and observation.exists
                and observation.status in ("exited", "dead")
            ):
                raise ProbeFailed(container_name, observation.exit_code)

            elapsed = self.clock() - start
            if elapsed >= timeout:
                raise ProbeTimeout(container_name, condition.value, elapsed)

            self.sleep(min(interval, timeout - elapsed))
            interval = min(interval * self.backoff, ceiling)

    @staticmethod
    def satisfies(observation: ContainerObservation, condition: ReadinessCondition) -> bool:
        if condition is ReadinessCondition.EXITED_ZERO:
            return observation.exited_zero
        return observation.running and observation.healthy

    def probe(self, service: ServiceDescriptor) -> ProbeOutcome:
        """
        Runs the service's readiness probe exactly once.
        """
        readiness = service.readiness
        if readiness is None:
            return ProbeOutcome(ok=True, detail="no readiness probe")

        if isinstance(readiness, CommandProbe):
            command, *args = readiness.command
            try:
                self.runner.run(command, args, silent=True, timeout=self.probe_timeout)
            except ProcessError as e:
                return ProbeOutcome(ok=False, detail=str(e))
            return ProbeOutcome(ok=True)

        if isinstance(readiness, PortProbe):
            if is_port_open(readiness.host, readiness.port, timeout=self.probe_timeout):
                return ProbeOutcome(ok=True)
            return ProbeOutcome(
                ok=False,
                detail=f"Port check failed - nothing listening on {readiness.host}:{readiness.port}",
            )

        raise TypeError(f"Unsupported readiness probe: {readiness!r}")
