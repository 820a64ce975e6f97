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
Models for what the orchestrator reports back: container observations,
per-service reports, aggregate results and health reports.
"""
from typing import Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field


class OperationMode(str, Enum):
    """
    How much of the existing environment is torn down before bring-up.
    """
    FRESH = "fresh"
    USE_EXISTING = "use-existing"
    REINITIALIZE = "reinitialize"
    MANUAL = "manual"

    @property
    def removes_containers(self) -> bool:
        return self in (OperationMode.FRESH, OperationMode.REINITIALIZE)

    @property
    def removes_volumes(self) -> bool:
        return self is OperationMode.FRESH

    @property
    def removes_stale_containers(self) -> bool:
        return self is not OperationMode.USE_EXISTING


class ServiceState(str, Enum):
    """Coarse classification of a service container."""
    MISSING = "missing"
    STOPPED = "stopped"
    UNKNOWN = "unknown"
    RUNNING = "running"


class OrchestratorState(str, Enum):
    """
    States of the bring-up state machine.
    """
    IDLE = "idle"
    NETWORK_READY = "network-ready"
    STARTING = "starting"
    INIT_RUNNING = "init-running"
    PROBING = "probing"
    READY = "ready"
    FAILED = "failed"
    VERIFIED = "verified"
    PARTIALLY_FAILED = "partially-failed"


class ContainerObservation(BaseModel):
    """
    Snapshot of a container's runtime state. Recomputed on every request.
    """
    container_name: str
    exists: bool = False
    running: bool = False
    healthy: bool = False
    exit_code: Optional[int] = None
    status: Optional[str] = None
    health_status: Optional[str] = None

    @property
    def exited_zero(self) -> bool:
        return self.exists and not self.running and self.status == "exited" and self.exit_code == 0

    @property
    def exited_with_failure(self) -> bool:
        return (
            self.exists
            and not self.running
            and self.status in ("exited", "dead")
            and self.exit_code not in (None, 0)
        )


class ServiceReport(BaseModel):
    """
    Everything known about one service after a status read.
    """
    name: str
    state: ServiceState = ServiceState.MISSING
    container: Optional[ContainerObservation] = None
    init_job: Optional[ContainerObservation] = None
    init_completed: bool = True
    ready: bool = False
    error: Optional[str] = None


class OrchestrationResult(BaseModel):
    """
    Result of status() and initialize().
    """
    mode: Optional[OperationMode] = None
    per_service: Dict[str, ServiceReport] = Field(default_factory=dict)
    overall_healthy: bool = False
    verified: bool = False
    issues: List[str] = Field(default_factory=list)

    def _names(self, state: ServiceState) -> List[str]:
        return [name for name, report in self.per_service.items() if report.state == state]

    @property
    def running(self) -> List[str]:
        return self._names(ServiceState.RUNNING)

    @property
    def stopped(self) -> List[str]:
        return self._names(ServiceState.STOPPED)

    @property
    def missing(self) -> List[str]:
        return self._names(ServiceState.MISSING)

    @property
    def unknown(self) -> List[str]:
        """Services whose container could not be inspected."""
        return self._names(ServiceState.UNKNOWN)

    @property
    def init_required(self) -> List[str]:
        return [
            name for name, report in self.per_service.items()
            if not report.init_completed and report.error is None
        ]

    @property
    def needs_init(self) -> bool:
        """
        True when any service is absent, stopped or has an unfinished init job.
        Services that could not be inspected do not count.
        """
        return bool(self.missing or self.stopped or self.init_required)


class ServiceHealth(BaseModel):
    """Outcome of a single health check."""
    status: str
    error: Optional[str] = None
    url: Optional[str] = None


class HealthReport(BaseModel):
    """
    Result of health(). Never raised, always returned.
    """
    healthy: bool = True
    issues: List[str] = Field(default_factory=list)
    services: Dict[str, ServiceHealth] = Field(default_factory=dict)
