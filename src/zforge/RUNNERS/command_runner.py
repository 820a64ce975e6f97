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
Execution of external commands with captured or streamed output.
"""
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import psutil

from ..exceptions import ProcessError
from ..UTILS.output import LogSink


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    command: List[str]
    stdout: str
    stderr: str
    exit_code: int

    @property
    def lines(self) -> List[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


def terminate_tree(pid: int, timeout: float = 5.0) -> None:
    """
    Sends SIGTERM to a process and all of its children, then SIGKILL to
    whatever is still alive after ``timeout`` seconds.

    Args:
        pid: Root of the process tree.
        timeout: Grace period before killing.
    """
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


class FollowedProcess:
    """
    A long-running process whose output is delivered line by line from a
    background reader thread. Usable as a context manager.
    """

    def __init__(self, process: subprocess.Popen, on_line: Callable[[str], None]):
        self.process = process
        self._on_line = on_line
        self._reader = threading.Thread(target=self._read, daemon=True)
        self._reader.start()

    def _read(self):
        try:
            for line in self.process.stdout:
                self._on_line(line.rstrip("\n"))
        finally:
            self.process.stdout.close()

    def is_running(self) -> bool:
        return self.process.poll() is None

    def wait(self, timeout: Optional[float] = None) -> int:
        """Waits for the process to end on its own and drains its output."""
        code = self.process.wait(timeout=timeout)
        self._reader.join(timeout=timeout)
        return code

    def stop(self, timeout: float = 5.0):
        """
        Terminates the process tree and joins the reader thread.
        """
        if self.is_running():
            terminate_tree(self.process.pid, timeout=timeout)
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()
        self._reader.join(timeout=timeout)

    def __enter__(self) -> "FollowedProcess":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


class CommandRunner:
    """
    Runs one external process per call from an argument vector.

    No shell is involved and no retries happen here; callers compose
    retries with the retry policy.
    """

    def __init__(self, sink: Optional[LogSink] = None, default_timeout: Optional[float] = None):
        """
        :param sink: Receives streamed output lines when a call is not silent.
        :param default_timeout: Timeout in seconds used when a call gives none.
        """
        self.sink = sink or print
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        silent: bool = False,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """
        Runs ``command`` with ``args`` and waits for it.

        :param command: Executable name or path.
        :param args: Arguments, passed as-is.
        :param silent: Capture only; do not stream output to the sink.
        :param timeout: Seconds before the process tree is killed.
        :return: Captured stdout/stderr and exit code.
        :raises ProcessError: On spawn failure, timeout or non-zero exit.
        """
        argv = [command, *args]
        timeout = timeout if timeout is not None else self.default_timeout

        process = self._spawn(argv, cwd, env)

        if silent:
            stdout, stderr = self._communicate(process, argv, timeout)
        else:
            self.sink(f"$ {' '.join(argv)}")
            stdout, stderr = self._stream(process, argv, timeout)

        if process.returncode != 0:
            raise ProcessError(argv, process.returncode, stderr)

        return CommandResult(argv, stdout, stderr, process.returncode)

    def follow(
        self,
        command: str,
        args: Sequence[str] = (),
        on_line: Optional[Callable[[str], None]] = None,
        cwd: Optional[str] = None,
    ) -> FollowedProcess:
        """
        Starts a long-running process (``docker logs -f``) and hands every
        output line to ``on_line`` from a background thread.

        :raises ProcessError: If the process cannot be spawned.
        """
        argv = [command, *args]
        try:
            process = subprocess.Popen(
                argv,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,
                shell=False,
            )
        except FileNotFoundError as e:
            raise ProcessError(argv, 127, str(e), not_found=True) from e
        except PermissionError as e:
            raise ProcessError(argv, 126, str(e)) from e
        return FollowedProcess(process, on_line or self.sink)

    def _spawn(self, argv: List[str], cwd: Optional[str], env: Optional[Dict[str, str]]) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                argv,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
            )
        except FileNotFoundError as e:
            raise ProcessError(argv, 127, str(e), not_found=True) from e
        except PermissionError as e:
            raise ProcessError(argv, 126, str(e)) from e

    def _communicate(self, process: subprocess.Popen, argv: List[str], timeout: Optional[float]):
        try:
            return process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            terminate_tree(process.pid)
            _, stderr = process.communicate()
            raise ProcessError(argv, None, stderr, timed_out=True)

    def _stream(self, process: subprocess.Popen, argv: List[str], timeout: Optional[float]):
        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        def pump(stream, collected):
            for line in stream:
                collected.append(line)
                self.sink(line.rstrip("\n"))
            stream.close()

        readers = [
            threading.Thread(target=pump, args=(process.stdout, stdout_lines), daemon=True),
            threading.Thread(target=pump, args=(process.stderr, stderr_lines), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            terminate_tree(process.pid)
            process.wait()
            for reader in readers:
                reader.join(timeout=1)
            raise ProcessError(argv, None, "".join(stderr_lines), timed_out=True)

        for reader in readers:
            reader.join()

        return "".join(stdout_lines), "".join(stderr_lines)
