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
Live log following for containers while they are being brought up.
"""
from typing import Dict, List, Optional

from ..exceptions import ProcessError
from ..RUNNERS.command_runner import CommandRunner, FollowedProcess
from ..UTILS.output import LogSink, prefixed


class LogAggregator:
    """
    Follows the logs of several containers at once, one background reader
    per container, and tags each line with the service name.

    Display only: followers hold no locks and never block the caller.
    Use as a context manager so every follower is stopped on exit.
    """

    def __init__(self, runner: CommandRunner, docker: str = "docker", sink: Optional[LogSink] = None):
        """
        :param runner: Spawns the ``docker logs -f`` processes.
        :param docker: Docker binary.
        :param sink: Receives the tagged log lines.
        """
        self.runner = runner
        self.docker = docker
        self.sink = sink or print
        self.followers: Dict[str, FollowedProcess] = {}

    def follow(self, name: str, container_name: str):
        """
        Starts following ``container_name``; a second call for the same
        container is ignored.
        """
        if container_name in self.followers:
            return
        try:
            self.followers[container_name] = self.runner.follow(
                self.docker,
                ["logs", "--follow", "--tail", "0", container_name],
                on_line=prefixed(self.sink, name),
            )
        except ProcessError as e:
            self.sink(f"Warning: cannot follow logs of {container_name}: {e}")

    def following(self) -> List[str]:
        return list(self.followers)

    def stop(self):
        """
        Stops every follower.
        """
        while self.followers:
            _, follower = self.followers.popitem()
            follower.stop()

    def __enter__(self) -> "LogAggregator":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
