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
The static topology of managed services.
"""
from typing import Dict, List, Optional, Sequence

from ..exceptions import ConfigError
from ..MODELS.compose_topology import ComposeTopology
from ..MODELS.service_descriptor import CommandProbe, InitJob, PortProbe, ServiceDescriptor
from ..RUNNERS.dependency_resolver import DependencyResolver


class ServiceRegistry:
    """
    Pure lookup over a fixed list of service descriptors.
    """

    def __init__(self, services: Sequence[ServiceDescriptor]):
        """
        :param services: Descriptors in declaration order.
        :raises ConfigError: On duplicate names, unknown dependencies or cycles.
        """
        self._services = tuple(services)
        self._by_name: Dict[str, ServiceDescriptor] = {}
        for svc in self._services:
            if svc.name in self._by_name:
                raise ConfigError(f"Duplicate service name: {svc.name}")
            self._by_name[svc.name] = svc
        self._ordered = tuple(DependencyResolver().resolve_order(self._services))

    def services(self) -> List[ServiceDescriptor]:
        return list(self._services)

    def ordered(self) -> List[ServiceDescriptor]:
        """Services in bring-up order; each carries its own init job."""
        return list(self._ordered)

    def get(self, name: str) -> Optional[ServiceDescriptor]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return [svc.name for svc in self._services]

    def container_names(self) -> List[str]:
        """Every managed container, init jobs included, in bring-up order."""
        return [name for svc in self._ordered for name in svc.containers]

    def volumes(self) -> List[str]:
        return [volume for svc in self._ordered for volume in svc.volumes]

    def verify_against(self, topology: ComposeTopology) -> List[str]:
        """
        Cross-checks the registry with a parsed compose file.

        :return: One message per container or compose service the compose
            file does not declare as expected.
        """
        issues = []
        declared = topology.container_names()
        for svc in self._ordered:
            expected = [(svc.container_name, svc.compose_service)]
            if svc.init_job:
                expected.append((svc.init_job.container_name, svc.init_job.compose_service))
            for container_name, compose_service in expected:
                if compose_service not in topology.services:
                    issues.append(f"{svc.name}: compose service '{compose_service}' is not declared")
                elif declared.get(container_name) != compose_service:
                    issues.append(
                        f"{svc.name}: compose service '{compose_service}' does not use "
                        f"container_name '{container_name}'"
                    )
        return issues


def default_services() -> List[ServiceDescriptor]:
    """
    The Zephyr development stack.
    """
    return [
        ServiceDescriptor(
            name="PostgreSQL",
            container_name="zephyr-postgres-dev",
            compose_service="postgres-dev",
            readiness=CommandProbe(
                command=("docker", "exec", "zephyr-postgres-dev", "pg_isready", "-U", "postgres", "-d", "zephyr")
            ),
            init_job=InitJob(container_name="zephyr-prisma-migrate", compose_service="prisma-migrate"),
            volumes=("zephyr_postgres_data_dev",),
            url="localhost:5433",
        ),
        ServiceDescriptor(
            name="Redis",
            container_name="zephyr-redis-dev",
            compose_service="redis-dev",
            readiness=CommandProbe(
                command=("docker", "exec", "zephyr-redis-dev", "redis-cli", "-a", "zephyrredis", "ping")
            ),
            volumes=("zephyr_redis_data_dev",),
            url="localhost:6379",
        ),
        ServiceDescriptor(
            name="MinIO",
            container_name="zephyr-minio-dev",
            compose_service="minio-dev",
            readiness=PortProbe(host="localhost", port=9000),
            init_job=InitJob(container_name="zephyr-minio-init", compose_service="minio-init"),
            volumes=("zephyr_minio_data_dev",),
            url="http://localhost:9000",
        ),
    ]


def default_registry() -> ServiceRegistry:
    return ServiceRegistry(default_services())
