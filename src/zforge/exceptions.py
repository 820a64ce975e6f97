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
Exception hierarchy for the orchestration core.

Every error raised by zforge derives from ForgeError so that the CLI can
print a single, actionable message for anything that goes wrong.
"""
from typing import List, Optional, Sequence


class ForgeError(Exception):
    """Base class for all zforge errors."""


class ConfigError(ForgeError):
    """A configuration, compose or environment file could not be used."""


# Fragments of docker / OS error output that no amount of retrying fixes.
PERMANENT_STDERR_MARKERS = (
    "cannot connect to the docker daemon",
    "couldn't connect to docker daemon",
    "is the docker daemon running",
    "permission denied",
)


class ProcessError(ForgeError):
    """
    An external command failed, timed out, or could not be spawned.

    :param command: The full argument vector that was executed.
    :param exit_code: Exit status, or None when the process never ran to completion.
    :param stderr: Captured standard error (or the spawn failure message).
    """

    def __init__(
        self,
        command: Sequence[str],
        exit_code: Optional[int],
        stderr: str = "",
        not_found: bool = False,
        timed_out: bool = False,
    ):
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr or ""
        self.not_found = not_found
        self.timed_out = timed_out
        super().__init__(self._describe())

    def _describe(self) -> str:
        cmd = " ".join(self.command)
        if self.not_found:
            return f"Command not found: {cmd}"
        if self.timed_out:
            return f"Command timed out: {cmd}"
        detail = self.stderr.strip().splitlines()
        message = f"Command failed with exit code {self.exit_code}: {cmd}"
        if detail:
            message += f" ({detail[-1]})"
        return message

    @property
    def permanent(self) -> bool:
        """True when the failure cannot be fixed by trying again."""
        if self.not_found:
            return True
        lowered = self.stderr.lower()
        return any(marker in lowered for marker in PERMANENT_STDERR_MARKERS)


class NetworkError(ForgeError):
    """Provisioning the shared network failed for an unexpected reason."""

    def __init__(self, network: str, reason: str):
        self.network = network
        self.reason = reason
        super().__init__(f"Network '{network}': {reason}")


class ProbeError(ForgeError):
    """Base class for readiness failures."""


class ProbeTimeout(ProbeError):
    """A container did not reach the awaited condition in time."""

    def __init__(self, container_name: str, condition: str, elapsed: float):
        self.container_name = container_name
        self.condition = condition
        self.elapsed = elapsed
        super().__init__(
            f"Container {container_name} not {condition} after {elapsed:.1f}s"
        )


class ProbeFailed(ProbeError):
    """A container reached a terminal failure state while being awaited."""

    def __init__(self, container_name: str, exit_code: Optional[int]):
        self.container_name = container_name
        self.exit_code = exit_code
        super().__init__(f"Container {container_name} exited with code {exit_code}")


class RetryExhausted(ForgeError):
    """Every attempt of a retried operation failed."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


class ServiceInitError(ForgeError):
    """
    Bringing up a named service failed.

    Carries everything an operator needs to act on the failure: the service,
    the underlying cause, how many whole-initialize attempts were made, the
    issues collected along the way and recent log lines of the container.
    """

    def __init__(
        self,
        service: str,
        cause: Optional[BaseException] = None,
        attempts: int = 1,
        issues: Optional[List[str]] = None,
        logs: Optional[List[str]] = None,
    ):
        self.service = service
        self.cause = cause
        self.attempts = attempts
        self.issues = list(issues or [])
        self.logs = list(logs or [])
        super().__init__(str(self))

    def __str__(self) -> str:
        message = f"{self.service} failed to initialize"
        if self.cause is not None:
            message += f": {self.cause}"
        if self.attempts > 1:
            message += f" (after {self.attempts} attempts)"
        return message
