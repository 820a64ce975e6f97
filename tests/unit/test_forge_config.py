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
Unit tests for configuration loading.
"""
import os

import pytest

from zforge.exceptions import ConfigError
from zforge.MODELS.forge_config import ForgeConfig


def test_defaults(tmp_path):
    config = ForgeConfig.load(str(tmp_path), environ={})
    assert config.initialize_attempts == 3
    assert config.command_retries == 3
    assert config.init_job_timeout == 300
    assert config.readiness_timeout == 120
    assert config.network_name == "zephyr_dev_network"
    assert config.compose_path == os.path.join(str(tmp_path), "docker-compose.dev.yml")


def test_environment_overrides(tmp_path):
    config = ForgeConfig.load(
        str(tmp_path),
        environ={
            "ZFORGE_INITIALIZE_ATTEMPTS": "5",
            "ZFORGE_STRICT_INIT_JOBS": "true",
            "ZFORGE_COMPOSE_COMMAND": "docker-compose",
            "ZFORGE_NETWORK_LABELS": "ignored",
            "UNRELATED": "x",
        },
    )
    assert config.initialize_attempts == 5
    assert config.strict_init_jobs is True
    assert config.compose_command == ("docker-compose",)
    assert config.network_labels["com.zephyr.managed-by"] == "zephyr-forge"


def test_config_file_and_precedence(tmp_path):
    (tmp_path / ".zforge.env").write_text("ZFORGE_READINESS_TIMEOUT=60\nZFORGE_POLL_INTERVAL=1\n")
    config = ForgeConfig.load(
        str(tmp_path),
        environ={"ZFORGE_POLL_INTERVAL": "3"},
        compose_file="compose.yml",
        project_name=None,
    )
    assert config.readiness_timeout == 60
    assert config.poll_interval == 3
    assert config.compose_file == "compose.yml"
    assert config.project_name is None


def test_invalid_value(tmp_path):
    with pytest.raises(ConfigError, match="initialize_attempts"):
        ForgeConfig.load(str(tmp_path), environ={"ZFORGE_INITIALIZE_ATTEMPTS": "0"})
