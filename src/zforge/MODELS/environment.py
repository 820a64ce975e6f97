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
Schema for the development ``.env`` file consumed by the Zephyr apps.
"""
from typing import Dict, List, Literal
from urllib.parse import urlparse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ZephyrEnvironment(BaseModel):
    """
    Required variables for the local stack. Unknown keys are allowed.
    """
    model_config = ConfigDict(extra="allow")

    # Database
    POSTGRES_USER: str = Field(min_length=1)
    POSTGRES_PASSWORD: str = Field(min_length=1)
    POSTGRES_DB: str = Field(min_length=1)
    POSTGRES_PORT: str = "5433"
    POSTGRES_HOST: str = "localhost"
    DATABASE_URL: str

    # Redis
    REDIS_PASSWORD: str = Field(min_length=1)
    REDIS_PORT: str = "6379"
    REDIS_HOST: str = "localhost"

    # MinIO
    MINIO_ROOT_USER: str = Field(min_length=1)
    MINIO_ROOT_PASSWORD: str = Field(min_length=1)
    MINIO_BUCKET_NAME: str = "uploads"
    MINIO_PORT: str = "9000"
    MINIO_CONSOLE_PORT: str = "9001"

    # Application
    JWT_SECRET: str = Field(min_length=1)
    NODE_ENV: Literal["development", "production"] = "development"

    @field_validator("DATABASE_URL")
    @classmethod
    def _database_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("postgres", "postgresql") or not parsed.hostname:
            raise ValueError("must be a postgresql:// URL")
        return value

    @field_validator("POSTGRES_PORT", "REDIS_PORT", "MINIO_PORT", "MINIO_CONSOLE_PORT")
    @classmethod
    def _port(cls, value: str) -> str:
        if not value.isdigit() or not 0 < int(value) < 65536:
            raise ValueError("must be a port number")
        return value


def validate_environment(values: Dict[str, str]) -> List[str]:
    """
    Validates parsed ``.env`` values.

    :param values: Variables read from the file.
    :return: One ``KEY: problem`` entry per invalid or missing variable.
    """
    try:
        ZephyrEnvironment(**values)
    except ValidationError as e:
        issues = []
        for error in e.errors():
            key = ".".join(str(part) for part in error["loc"]) or "<root>"
            message = error["msg"]
            if error["type"] == "missing":
                message = "is required"
            issues.append(f"{key}: {message}")
        return issues
    return []
