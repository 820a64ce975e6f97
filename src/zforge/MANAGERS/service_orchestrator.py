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
Orchestration of the managed services: status reads, the bring-up state
machine, whole-topology start/stop and aggregate health.
"""
import time
from typing import Callable, Dict, List, Optional, Union

from ..exceptions import ForgeError, ProbeError, ProbeTimeout, RetryExhausted, ServiceInitError
from ..MODELS.forge_config import ForgeConfig
from ..MODELS.orchestration_result import (
    ContainerObservation,
    HealthReport,
    OperationMode,
    OrchestrationResult,
    OrchestratorState,
    ServiceHealth,
    ServiceReport,
    ServiceState,
)
from ..MODELS.service_descriptor import ReadinessCondition, ServiceDescriptor
from ..PARSERS.compose_parser import ComposeParser
from ..REGISTRY.service_registry import ServiceRegistry, default_registry
from ..RUNNERS.command_runner import CommandRunner
from ..RUNNERS.retry_policy import RetryPolicy, is_permanent_process_error
from ..UTILS.output import LogSink
from .container_manager import ContainerManager
from .health_monitor import ReadinessProber
from .log_aggregator import LogAggregator
from .network_manager import NetworkManager
from .volume_manager import VolumeManager


def is_permanent_failure(error: BaseException) -> bool:
    """
    Follows the chain of causes looking for a process error that retrying
    cannot fix (missing binary, docker daemon down).
    """
    seen = 0
    current: Optional[BaseException] = error
    while current is not None and seen < 10:
        if is_permanent_process_error(current):
            return True
        current = getattr(current, "cause", None) or current.__cause__
        seen += 1
    return False


def classify(observation: ContainerObservation) -> ServiceState:
    if not observation.exists:
        return ServiceState.MISSING
    if observation.running:
        return ServiceState.RUNNING
    return ServiceState.STOPPED


class ServiceOrchestrator:
    """
    Drives the lifecycle of the services in a registry.

    Services are brought up one at a time in registry order so that log
    output and failure attribution stay unambiguous. Callers must not run
    two orchestrators against the same topology at the same time.
    """

    def __init__(
        self,
        config: Optional[ForgeConfig] = None,
        registry: Optional[ServiceRegistry] = None,
        runner: Optional[CommandRunner] = None,
        sink: Optional[LogSink] = None,
        follow_logs: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the orchestrator.

        :param config: Orchestration settings; defaults apply when omitted.
        :param registry: Services to manage; the Zephyr stack by default.
        :param runner: Executes docker commands.
        :param sink: Receives progress text. Replaceable by a no-op.
        :param follow_logs: Stream container logs to the sink during initialize().
        :param clock: Monotonic time source for readiness waits.
        :param sleep: Used between polls and retries.
        """
        self.config = config or ForgeConfig()
        self.registry = registry or default_registry()
        self.sink = sink or print
        self.runner = runner or CommandRunner(sink=self.sink, default_timeout=self.config.command_timeout)
        self.follow_logs = follow_logs
        self.sleep = sleep

        self.command_retry = RetryPolicy(
            retries=self.config.command_retries,
            min_delay=self.config.retry_min_delay,
            max_delay=self.config.retry_max_delay,
            is_permanent=is_permanent_process_error,
            on_retry=lambda error, attempt: self.sink(
                f"Retry attempt {attempt}/{self.config.command_retries}: {error}"
            ),
            sleep=sleep,
        )
        docker = self.config.docker_binary
        self.containers = ContainerManager(self.config, self.runner, self.command_retry)
        self.networks = NetworkManager(self.runner, docker, self.sink)
        self.volumes = VolumeManager(self.runner, docker, self.sink)
        self.prober = ReadinessProber(
            self.containers,
            self.runner,
            max_poll_interval=self.config.max_poll_interval,
            probe_timeout=self.config.probe_timeout,
            clock=clock,
            sleep=sleep,
        )

        self.state = OrchestratorState.IDLE
        self.service_states: Dict[str, OrchestratorState] = {}
        self._logs: Optional[LogAggregator] = None

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    def status(self) -> OrchestrationResult:
        """
        Inspects every managed container without changing anything.

        Inspection errors are recorded against the affected service and
        never abort the whole read.

        :return: Per-service reports plus the list of issues found.
        """
        result = OrchestrationResult()

        for svc in self.registry.ordered():
            report = ServiceReport(name=svc.name, init_completed=svc.init_job is None)
            try:
                container = self.containers.inspect(svc.container_name)
                report.container = container
                report.state = classify(container)
                if report.state is ServiceState.MISSING:
                    result.issues.append(f"{svc.name}: container {svc.container_name} is missing")
                elif report.state is ServiceState.STOPPED:
                    result.issues.append(f"{svc.name}: container {svc.container_name} is not running")

                if svc.init_job:
                    job = self.containers.inspect(svc.init_job.container_name)
                    report.init_job = job
                    report.init_completed = job.exited_zero
                    if not report.init_completed:
                        result.issues.append(self._init_issue(svc, job))

                report.ready = (
                    report.state is ServiceState.RUNNING
                    and container.healthy
                    and report.init_completed
                )
            except ForgeError as e:
                if report.container is None:
                    report.state = ServiceState.UNKNOWN
                report.ready = False
                report.error = str(e)
                result.issues.append(f"{svc.name}: {e}")

            result.per_service[svc.name] = report

        result.overall_healthy = all(r.ready for r in result.per_service.values())
        return result

    def health(self) -> HealthReport:
        """
        Runs every readiness probe once and checks init-job completion.
        Starts and stops nothing; never raises for a failed check.
        """
        report = HealthReport()

        for svc in self.registry.ordered():
            problems: List[str] = []

            if svc.init_job:
                try:
                    job = self.containers.inspect(svc.init_job.container_name)
                    if not job.exited_zero:
                        problems.append(self._init_issue(svc, job))
                except ForgeError as e:
                    problems.append(f"{svc.name}: cannot inspect init job: {e}")

            if svc.readiness is not None:
                try:
                    outcome = self.prober.probe(svc)
                    if not outcome.ok:
                        problems.append(f"{svc.name}: {outcome.detail}")
                except ForgeError as e:
                    problems.append(f"{svc.name}: {e}")
            elif not svc.init_job:
                continue

            if problems:
                report.healthy = False
                report.issues.extend(problems)
                report.services[svc.name] = ServiceHealth(
                    status="unhealthy", error="; ".join(problems), url=svc.url
                )
            else:
                report.services[svc.name] = ServiceHealth(status="healthy", url=svc.url)

        return report

    @staticmethod
    def _init_issue(svc: ServiceDescriptor, job: ContainerObservation) -> str:
        name = svc.init_job.container_name
        if not job.exists:
            return f"{svc.name}: init job {name} has not run"
        if job.running:
            return f"{svc.name}: init job {name} is still running"
        return f"{svc.name}: init job {name} exited with code {job.exit_code}"

    def verify_topology(self) -> List[str]:
        """
        Cross-checks the registry against the compose file.

        :raises ConfigError: If the compose file cannot be read.
        """
        topology = ComposeParser().parse(self.config.compose_path)
        return self.registry.verify_against(topology)

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def ensure_runtime(self):
        """
        Checks that the docker daemon answers, retrying transient failures.

        :raises ProcessError: If docker is missing or the daemon is down.
        :raises RetryExhausted: If docker kept failing for another reason.
        """
        self.command_retry.call(
            lambda: self.runner.run(self.config.docker_binary, ["info"], silent=True)
        )

    def start(self):
        """Brings the whole compose topology up, without readiness waits."""
        self.sink("Starting services...")
        self.containers.compose_up()
        self.sink("Services started successfully")

    def stop(self):
        """Brings the whole compose topology down. Volumes are kept."""
        self.sink("Stopping services...")
        self.containers.compose_down()
        self.sink("Services stopped successfully")

    def initialize(self, mode: Union[OperationMode, str]) -> OrchestrationResult:
        """
        Full bring-up: teardown according to ``mode``, network, then each
        service with its init job and readiness wait, then a final health
        check. A failed bring-up is retried as a whole.

        :param mode: Teardown policy chosen by the caller.
        :return: Status of the verified environment.
        :raises ServiceInitError: After the last attempt failed, or when the
            final health check reports problems.
        :raises ConfigError: If the compose file cannot be read.
        """
        mode = OperationMode(mode)
        bound = self.config.initialize_attempts

        for issue in self.verify_topology():
            self.sink(f"Warning: {issue}")

        issues: List[str] = []
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                self.sink(f"Retrying initialization (attempt {attempts}/{bound})...")
            try:
                self._bring_up(mode)
            except ServiceInitError as e:
                issues.append(f"Attempt {attempts}: {e}")
                for issue in e.issues:
                    if issue not in issues:
                        issues.append(issue)
                raise

        policy = RetryPolicy(
            retries=bound - 1,
            min_delay=self.config.retry_min_delay,
            max_delay=self.config.retry_max_delay,
            is_permanent=is_permanent_failure,
            on_retry=lambda error, n: self.sink(f"Initialization attempt {n} failed: {error}"),
            sleep=self.sleep,
        )

        self._logs = LogAggregator(self.runner, self.config.docker_binary, self.sink) if self.follow_logs else None
        try:
            policy.call(attempt)
        except RetryExhausted as e:
            self.state = OrchestratorState.PARTIALLY_FAILED
            error = e.last_error
            if not isinstance(error, ServiceInitError):
                error = ServiceInitError("environment", cause=error)
            error.attempts = e.attempts
            error.issues = issues
            raise error
        except ServiceInitError as e:
            self.state = OrchestratorState.PARTIALLY_FAILED
            e.attempts = attempts
            e.issues = issues
            raise
        finally:
            if self._logs is not None:
                self._logs.stop()
                self._logs = None

        self.sink("Performing final health check...")
        report = self.health()
        if not report.healthy:
            self.state = OrchestratorState.PARTIALLY_FAILED
            failing = next(
                (name for name, svc in report.services.items() if svc.status != "healthy"),
                "environment",
            )
            raise ServiceInitError(failing, attempts=attempts, issues=report.issues)

        self.state = OrchestratorState.VERIFIED
        self.sink("Services initialized successfully")

        result = self.status()
        result.mode = mode
        result.verified = True
        return result

    def _bring_up(self, mode: OperationMode):
        self.state = OrchestratorState.IDLE
        self.service_states = {}

        try:
            self._teardown(mode)
        except ForgeError as e:
            raise ServiceInitError("teardown", cause=e, issues=[f"Teardown failed: {e}"]) from e

        network = self.config.network_name
        self.sink(f"Ensuring network {network}...")
        try:
            self.networks.ensure_network(network, self.config.network_labels)
        except ForgeError as e:
            raise ServiceInitError(f"network {network}", cause=e, issues=[f"Network {network}: {e}"]) from e
        self.state = OrchestratorState.NETWORK_READY

        services = self.registry.ordered()
        for step, svc in enumerate(services, start=1):
            self.sink(f"[{step}/{len(services)}] Initializing {svc.name}...")
            self._bring_up_service(svc, mode)

    def _teardown(self, mode: OperationMode):
        if not mode.removes_containers:
            return
        self.sink("Stopping and removing managed containers...")
        self.containers.compose_down()
        if mode.removes_volumes:
            self.sink("Removing persistent volumes...")
            self.volumes.remove_volumes(self.registry.volumes())

    def _set_state(self, svc: ServiceDescriptor, state: OrchestratorState):
        self.service_states[svc.name] = state
        self.state = state

    def _follow(self, name: str, container_name: str):
        if self._logs is not None:
            self._logs.follow(name, container_name)

    def _bring_up_service(self, svc: ServiceDescriptor, mode: OperationMode):
        config = self.config
        failing_container = svc.container_name
        try:
            self._set_state(svc, OrchestratorState.STARTING)
            if mode.removes_stale_containers:
                for container_name in svc.containers:
                    if self.containers.remove_container(container_name):
                        self.sink(f"Removed stale container {container_name}")

            self.containers.compose_up([svc.compose_service])
            self._follow(svc.name, svc.container_name)

            job = svc.init_job
            if job:
                self._set_state(svc, OrchestratorState.INIT_RUNNING)
                failing_container = job.container_name
                profiles = [job.profile] if job.profile else []
                self.containers.compose_up([job.compose_service], profiles=profiles)
                self._follow(job.compose_service, job.container_name)
                try:
                    self.prober.wait_until(
                        job.container_name,
                        ReadinessCondition.EXITED_ZERO,
                        timeout=config.init_job_timeout,
                        poll_interval=config.poll_interval,
                    )
                except ProbeTimeout as e:
                    if config.strict_init_jobs:
                        raise
                    self.sink(f"Warning: {e}; continuing, the final health check decides")

            self._set_state(svc, OrchestratorState.PROBING)
            failing_container = svc.container_name
            self.prober.wait_until(
                svc.container_name,
                ReadinessCondition.HEALTHY,
                timeout=config.readiness_timeout,
                poll_interval=config.poll_interval,
            )
            self._set_state(svc, OrchestratorState.READY)
            self.sink(f"{svc.name} is ready")
        except ForgeError as e:
            self._set_state(svc, OrchestratorState.FAILED)
            if isinstance(e, ProbeError):
                failing_container = getattr(e, "container_name", failing_container)
            logs = self.containers.logs(failing_container, tail=config.log_tail_lines)
            raise ServiceInitError(
                svc.name, cause=e, issues=[f"{svc.name} ({failing_container}): {e}"], logs=logs
            ) from e
