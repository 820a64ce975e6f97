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
Runtime configuration for the orchestrator.
"""
import os
from typing import Dict, Mapping, Optional, Tuple
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError

from ..exceptions import ConfigError

ENV_PREFIX = "ZFORGE_"
CONFIG_FILE = ".zforge.env"


class ForgeConfig(BaseModel):
    """
    Settings for one orchestration run. Every duration is in seconds.
    """
    project_root: str = "."
    compose_file: str = "docker-compose.dev.yml"
    project_name: Optional[str] = None

    docker_binary: str = "docker"
    compose_command: Tuple[str, ...] = ("docker", "compose")

    network_name: str = "zephyr_dev_network"
    network_labels: Dict[str, str] = Field(
        default_factory=lambda: {
            "com.zephyr.managed-by": "zephyr-forge",
            "com.zephyr.environment": "development",
        }
    )

    # Readiness
    init_job_timeout: float = 300.0
    readiness_timeout: float = 120.0
    poll_interval: float = 2.0
    max_poll_interval: float = 5.0
    probe_timeout: float = 5.0
    strict_init_jobs: bool = False

    # Retries
    initialize_attempts: int = Field(default=3, ge=1)
    command_retries: int = Field(default=3, ge=0)
    retry_min_delay: float = 1.0
    retry_max_delay: float = 3.0

    command_timeout: Optional[float] = 600.0
    log_tail_lines: int = 50

    @property
    def compose_path(self) -> str:
        return os.path.join(self.project_root, self.compose_file)

    @classmethod
    def load(
        cls,
        project_root: str = ".",
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "ForgeConfig":
        """
        Builds a configuration from defaults, an optional ``.zforge.env``
        file in the project root, ``ZFORGE_*`` environment variables and
        explicit overrides, in increasing order of precedence.

        :param project_root: Directory holding the compose file.
        :param environ: Environment to read; defaults to ``os.environ``.
        :raises ConfigError: If a value cannot be converted.
        """
        values: Dict[str, object] = {}

        config_file = os.path.join(project_root, CONFIG_FILE)
        if os.path.exists(config_file):
            values.update(_strip_prefix(dotenv_values(config_file)))

        values.update(_strip_prefix(os.environ if environ is None else environ))

        compose_command = values.get("compose_command")
        if isinstance(compose_command, str):
            values["compose_command"] = tuple(compose_command.split())

        values.update({k: v for k, v in overrides.items() if v is not None})
        values["project_root"] = project_root

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid zforge configuration: {e}") from e


def _strip_prefix(source: Mapping[str, Optional[str]]) -> Dict[str, str]:
    known = set(ForgeConfig.model_fields)
    result = {}
    for key, value in source.items():
        if not key.startswith(ENV_PREFIX) or value is None:
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in known and name not in ("network_labels", "project_root"):
            result[name] = value
    return result
