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
Models describing the managed services: readiness probes, init jobs and
the static service descriptors the registry is built from.
"""
from typing import Optional, Tuple, Union
from enum import Enum
from pydantic import BaseModel, ConfigDict


class ReadinessCondition(str, Enum):
    """
    Conditions a container can be awaited for.
    """
    HEALTHY = "healthy"
    EXITED_ZERO = "exited-zero"


class CommandProbe(BaseModel):
    """
    Readiness is decided by running a command; exit code 0 means ready.
    """
    model_config = ConfigDict(frozen=True)

    command: Tuple[str, ...]


class PortProbe(BaseModel):
    """
    Readiness is decided by opening a TCP connection.
    """
    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int


ReadinessProbe = Union[CommandProbe, PortProbe]


class InitJob(BaseModel):
    """
    A one-shot container that must exit with code 0 before its service
    counts as initialized (schema migrations, bucket bootstrap).
    """
    model_config = ConfigDict(frozen=True)

    container_name: str
    compose_service: str
    profile: Optional[str] = "init"


class ServiceDescriptor(BaseModel):
    """
    Static description of one managed service. Built once, never mutated.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    container_name: str
    compose_service: str
    readiness: Optional[ReadinessProbe] = None
    init_job: Optional[InitJob] = None
    depends_on_network: bool = True
    depends_on: Tuple[str, ...] = ()
    volumes: Tuple[str, ...] = ()
    url: Optional[str] = None

    @property
    def containers(self) -> Tuple[str, ...]:
        """All container names owned by this service, init job included."""
        if self.init_job:
            return (self.container_name, self.init_job.container_name)
        return (self.container_name,)
