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
Dependency resolution for services to determine bring-up order.
"""
from typing import Dict, List, Sequence

from ..exceptions import ConfigError
from ..MODELS.service_descriptor import ServiceDescriptor


class DependencyResolver:
    """
    Resolves the startup order of services based on their dependencies.
    """
    def resolve_order(self, services: Sequence[ServiceDescriptor]) -> List[ServiceDescriptor]:
        """
        Determines the order to start services using a depth-first
        topological sort. Independent services keep their declaration order.

        :param services: Service descriptors in declaration order.
        :return: Descriptors in the order they should be started.
        :raises ConfigError: On unknown dependencies or cycles.
        """
        by_name: Dict[str, ServiceDescriptor] = {svc.name: svc for svc in services}

        ordered: List[ServiceDescriptor] = []
        visited = set()
        processing = set()

        def visit(name: str):
            if name in processing:
                raise ConfigError(f"Circular dependency detected involving {name}")
            if name in visited:
                return
            processing.add(name)
            for dep in by_name[name].depends_on:
                if dep not in by_name:
                    raise ConfigError(f"Service {name} depends on unknown service {dep}")
                visit(dep)
            processing.remove(name)
            visited.add(name)
            ordered.append(by_name[name])

        for svc in services:
            visit(svc.name)

        return ordered
