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
Parser for Docker Compose YAML files. Read-only: the compose file is
owned by the project, never generated here.
"""
from typing import Any, Dict, List

import yaml

from ..exceptions import ConfigError
from ..MODELS.compose_topology import ComposeService, ComposeTopology


class ComposeParser:
    """
    Parser for docker-compose files.
    """

    def parse(self, compose_path: str) -> ComposeTopology:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed topology.
        :raises ConfigError: If the file is missing or not valid YAML.
        """
        try:
            with open(compose_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read compose file {compose_path}: {e}") from e
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ComposeTopology:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed topology.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid compose file: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Invalid compose file: top level must be a mapping")

        services = {}
        for name, spec in (data.get('services') or {}).items():
            services[name] = self._parse_service(name, spec or {})

        return ComposeTopology(
            services=services,
            networks={k: v or {} for k, v in (data.get('networks') or {}).items()},
            volumes={k: v or {} for k, v in (data.get('volumes') or {}).items()},
        )

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ComposeService:
        """
        Parses a single service definition.
        """
        depends_on = spec.get('depends_on', [])
        if isinstance(depends_on, dict):
            depends_on = list(depends_on.keys())

        networks = spec.get('networks', [])
        if isinstance(networks, dict):
            networks = list(networks.keys())

        volumes = []
        for v in spec.get('volumes', []):
            if isinstance(v, str):
                volumes.append(v.split(':')[0])
            elif isinstance(v, dict) and 'source' in v:
                volumes.append(v['source'])

        return ComposeService(
            name=name,
            image=spec.get('image'),
            container_name=spec.get('container_name'),
            profiles=self._to_list(spec.get('profiles')),
            depends_on=self._to_list(depends_on),
            networks=self._to_list(networks),
            volumes=volumes,
        )

    def _to_list(self, val: Any) -> List[str]:
        """
        Helper to ensure a value is a list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return [val]
        return [str(v) for v in val]
