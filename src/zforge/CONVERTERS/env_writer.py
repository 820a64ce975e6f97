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
Generation of the development ``.env`` file from a template.
"""
import os
from typing import Dict, Optional

from jinja2 import Template

ENV_TEMPLATE = """\
# Database
POSTGRES_USER={{ POSTGRES_USER }}
POSTGRES_PASSWORD={{ POSTGRES_PASSWORD }}
POSTGRES_DB={{ POSTGRES_DB }}
POSTGRES_PORT={{ POSTGRES_PORT }}
POSTGRES_HOST={{ POSTGRES_HOST }}
DATABASE_URL={{ database_url }}
POSTGRES_PRISMA_URL={{ database_url }}
POSTGRES_URL_NON_POOLING={{ database_url }}

# Redis
REDIS_PASSWORD={{ REDIS_PASSWORD }}
REDIS_PORT={{ REDIS_PORT }}
REDIS_HOST={{ REDIS_HOST }}
REDIS_URL=redis://:{{ REDIS_PASSWORD }}@{{ REDIS_HOST }}:{{ REDIS_PORT }}/0

# MinIO
MINIO_ROOT_USER={{ MINIO_ROOT_USER }}
MINIO_ROOT_PASSWORD={{ MINIO_ROOT_PASSWORD }}
MINIO_BUCKET_NAME={{ MINIO_BUCKET_NAME }}
MINIO_PORT={{ MINIO_PORT }}
MINIO_CONSOLE_PORT={{ MINIO_CONSOLE_PORT }}
MINIO_HOST={{ MINIO_HOST }}
MINIO_ENDPOINT=http://{{ MINIO_HOST }}:{{ MINIO_PORT }}
NEXT_PUBLIC_MINIO_ENDPOINT=http://localhost:{{ MINIO_PORT }}
MINIO_ENABLE_OBJECT_LOCKING=on

# Application
JWT_SECRET={{ JWT_SECRET }}
JWT_EXPIRES_IN={{ JWT_EXPIRES_IN }}
NEXT_PUBLIC_PORT=3000
NEXT_PUBLIC_URL=http://localhost:3000
NEXT_PUBLIC_SITE_URL=http://localhost:3000

# Misc
NODE_ENV={{ NODE_ENV }}
NEXT_TELEMETRY_DISABLED=1
TURBO_TELEMETRY_DISABLED=1
"""

DEFAULTS: Dict[str, str] = {
    "POSTGRES_USER": "postgres",
    "POSTGRES_PASSWORD": "postgres",
    "POSTGRES_DB": "zephyr",
    "POSTGRES_PORT": "5433",
    "POSTGRES_HOST": "localhost",
    "REDIS_PASSWORD": "zephyrredis",
    "REDIS_PORT": "6379",
    "REDIS_HOST": "localhost",
    "MINIO_ROOT_USER": "minioadmin",
    "MINIO_ROOT_PASSWORD": "minioadmin",
    "MINIO_BUCKET_NAME": "uploads",
    "MINIO_PORT": "9000",
    "MINIO_CONSOLE_PORT": "9001",
    "MINIO_HOST": "localhost",
    "JWT_SECRET": "zephyrjwtsupersecret",
    "JWT_EXPIRES_IN": "7d",
    "NODE_ENV": "development",
}


class EnvFileWriter:
    """
    Renders the development ``.env`` file.
    """

    def __init__(self, project_root: str = "."):
        """
        :param project_root: Directory the file is written to.
        """
        self.project_root = os.path.abspath(project_root)
        self.template = Template(ENV_TEMPLATE)

    def render(self, overrides: Optional[Dict[str, str]] = None) -> str:
        values = dict(DEFAULTS)
        values.update({k: v for k, v in (overrides or {}).items() if v not in (None, "")})
        values["database_url"] = (
            f"postgresql://{values['POSTGRES_USER']}:{values['POSTGRES_PASSWORD']}"
            f"@{values['POSTGRES_HOST']}:{values['POSTGRES_PORT']}/{values['POSTGRES_DB']}?schema=public"
        )
        return self.template.render(**values)

    def write(self, overrides: Optional[Dict[str, str]] = None, filename: str = ".env") -> str:
        """
        Writes the rendered file.

        :param overrides: Values replacing the defaults.
        :param filename: Target file name inside the project root.
        :return: Path of the written file.
        """
        os.makedirs(self.project_root, exist_ok=True)
        path = os.path.join(self.project_root, filename)
        with open(path, "w") as f:
            f.write(self.render(overrides))
        return path
