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
Models for the parts of a compose file the registry is checked against.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class ComposeService(BaseModel):
    """
    One service entry of a compose file.
    """
    name: str
    image: Optional[str] = None
    container_name: Optional[str] = None
    profiles: List[str] = []
    depends_on: List[str] = []
    networks: List[str] = []
    volumes: List[str] = []


class ComposeTopology(BaseModel):
    """
    Read-only view of a parsed compose file.
    """
    services: Dict[str, ComposeService] = Field(default_factory=dict)
    networks: Dict[str, Dict] = Field(default_factory=dict)
    volumes: Dict[str, Dict] = Field(default_factory=dict)

    def container_names(self) -> Dict[str, str]:
        """Maps each explicit container_name to its compose service."""
        return {
            svc.container_name: name
            for name, svc in self.services.items()
            if svc.container_name
        }

    def volume_names(self) -> List[str]:
        """Docker names of the declared volumes (``name:`` wins over the key)."""
        return [(spec or {}).get("name", key) for key, spec in self.volumes.items()]

    def network_names(self) -> List[str]:
        return [(spec or {}).get("name", key) for key, spec in self.networks.items()]
