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
Locating the Zephyr project on disk and checking its layout.
"""
import os
from typing import List

from ..exceptions import ConfigError

ROOT_MARKERS = ['package.json', 'docker-compose.dev.yml']
PROJECT_STRUCTURE = [
    'package.json',
    'docker-compose.dev.yml',
    'apps/web/package.json',
    'packages/db/package.json',
]


def find_project_root(start: str) -> str:
    """
    Walks up from ``start`` to the first directory holding both
    ``package.json`` and ``docker-compose.dev.yml``.

    :param start: Directory to begin the search in.
    :return: Absolute path of the project root.
    :raises ConfigError: If no parent directory qualifies.
    """
    current = os.path.abspath(start)
    while True:
        if all(os.path.isfile(os.path.join(current, marker)) for marker in ROOT_MARKERS):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    raise ConfigError(
        "Could not find project root (looking for package.json and docker-compose.dev.yml)"
    )


def validate_project_structure(project_root: str) -> List[str]:
    """Returns the files of the expected monorepo layout that are missing."""
    return [
        path for path in PROJECT_STRUCTURE
        if not os.path.exists(os.path.join(project_root, *path.split('/')))
    ]
