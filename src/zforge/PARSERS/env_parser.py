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
Reading and checking ``.env`` files.
"""
import os
from io import StringIO
from typing import Dict, List, Optional

from dotenv import dotenv_values

from ..exceptions import ConfigError
from ..MODELS.environment import validate_environment


class EnvParser:
    """
    Parser for .env files, backed by python-dotenv.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, str]:
        """
        Parses an .env file from a path.

        Args:
            env_path (str): Path to the .env file.

        Returns:
            Dict[str, str]: Variables; keys without a value map to "".

        Raises:
            ConfigError: If the file does not exist.
        """
        if not os.path.isfile(env_path):
            raise ConfigError(f"Missing environment file: {env_path}")
        return {k: v if v is not None else "" for k, v in dotenv_values(env_path).items()}

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, str]:
        """
        Parses environment variables from a string.
        Handles quotes, comments and ``${VAR}`` expansion the way dotenv does.
        """
        return {k: v if v is not None else "" for k, v in dotenv_values(stream=StringIO(content)).items()}

    @staticmethod
    def check(env_path: str) -> List[str]:
        """
        Validates an .env file against the development schema.

        Returns:
            List[str]: Problems found; empty when the file is valid.
        """
        try:
            values = EnvParser.parse(env_path)
        except ConfigError as e:
            return [str(e)]
        return validate_environment(values)


def check_env_files(project_root: str, files: Optional[List[str]] = None) -> Dict[str, List[str]]:
    """
    Validates every environment file of a project.

    :param project_root: Project directory.
    :param files: Relative paths to check; ``.env`` by default.
    :return: Mapping of file to its problems, only for files with problems.
    """
    problems = {}
    for name in files or [".env"]:
        issues = EnvParser.check(os.path.join(project_root, name))
        if issues:
            problems[name] = issues
    return problems
