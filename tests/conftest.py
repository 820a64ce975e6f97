"""
Shared fixtures: a scripted docker CLI and a fake clock.
"""
import json
from typing import Callable, Dict, List, Optional

import pytest

from zforge.exceptions import ProcessError
from zforge.MANAGERS import health_monitor
from zforge.MANAGERS.service_orchestrator import ServiceOrchestrator
from zforge.MODELS.forge_config import ForgeConfig
from zforge.RUNNERS.command_runner import CommandResult
from zforge.UTILS.output import null_sink

RUNNING_HEALTHY = {"Status": "running", "Running": True, "ExitCode": 0, "Health": {"Status": "healthy"}}
RUNNING_STARTING = {"Status": "running", "Running": True, "ExitCode": 0, "Health": {"Status": "starting"}}
RUNNING = {"Status": "running", "Running": True, "ExitCode": 0}
EXITED_OK = {"Status": "exited", "Running": False, "ExitCode": 0}


def exited(code: int) -> dict:
    return {"Status": "exited", "Running": False, "ExitCode": code}


# compose service -> (container name, state after `compose up`)
COMPOSE_SERVICES = {
    "postgres-dev": ("zephyr-postgres-dev", RUNNING_HEALTHY),
    "prisma-migrate": ("zephyr-prisma-migrate", EXITED_OK),
    "redis-dev": ("zephyr-redis-dev", RUNNING_HEALTHY),
    "minio-dev": ("zephyr-minio-dev", RUNNING_HEALTHY),
    "minio-init": ("zephyr-minio-init", EXITED_OK),
}

COMPOSE_FILE = """\
services:
  postgres-dev:
    image: postgres:16
    container_name: zephyr-postgres-dev
    networks: [zephyr_dev_network]
    volumes:
      - zephyr_postgres_data_dev:/var/lib/postgresql/data
  prisma-migrate:
    image: node:20
    container_name: zephyr-prisma-migrate
    profiles: [init]
    depends_on:
      postgres-dev:
        condition: service_healthy
  redis-dev:
    image: redis:7
    container_name: zephyr-redis-dev
    volumes:
      - zephyr_redis_data_dev:/data
  minio-dev:
    image: minio/minio
    container_name: zephyr-minio-dev
    volumes:
      - zephyr_minio_data_dev:/data
  minio-init:
    image: minio/mc
    container_name: zephyr-minio-init
    profiles: [init]
    depends_on: [minio-dev]
networks:
  zephyr_dev_network:
    external: true
volumes:
  zephyr_postgres_data_dev:
  zephyr_redis_data_dev:
  zephyr_minio_data_dev:
"""


class FakeFollower:
    """Stands in for a followed `docker logs -f` process."""

    def __init__(self, argv: List[str]):
        self.argv = argv
        self.stopped = False

    def stop(self, timeout: float = 5.0):
        self.stopped = True


class FakeDocker:
    """
    Scripted replacement for CommandRunner that understands the docker and
    docker compose invocations zforge makes and records every call.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.containers: Dict[str, dict] = {}
        self.networks: Dict[str, dict] = {}
        self.volumes = {"zephyr_postgres_data_dev", "zephyr_redis_data_dev", "zephyr_minio_data_dev"}
        # compose service -> list of states applied on successive `up`s; the last one sticks
        self.up_states: Dict[str, List[dict]] = {}
        # container -> list of states returned by successive inspects; the last one sticks
        self.inspect_states: Dict[str, List[dict]] = {}
        self.exec_ok: Dict[str, bool] = {}
        # container -> raw stdout returned by inspect instead of real state
        self.raw_inspect: Dict[str, str] = {}
        self.failures: List[dict] = []
        self.followers: List[FakeFollower] = []
        self.ups: Dict[str, int] = {}

    # Scripting helpers

    def fail(self, match: Callable[[List[str]], bool], stderr: str = "boom", exit_code: int = 1,
             times: Optional[int] = None, not_found: bool = False):
        """Makes calls matching ``match`` fail ``times`` times (forever when None)."""
        self.failures.append(
            {"match": match, "stderr": stderr, "exit_code": exit_code, "times": times, "not_found": not_found}
        )

    def set_running(self, *services: str):
        """Puts compose services into their post-`up` state without recording calls."""
        for service in services:
            container, state = COMPOSE_SERVICES[service]
            self.containers[container] = dict(state)

    def add_network(self, name: str, labels: Optional[Dict[str, str]] = None, attached: Optional[List[str]] = None):
        self.networks[name] = {"labels": dict(labels or {}), "attached": list(attached or [])}

    # Call inspection helpers

    def matching(self, *prefix: str) -> List[List[str]]:
        """Calls whose argv starts with ``prefix``."""
        return [call for call in self.calls if call[:len(prefix)] == list(prefix)]

    def compose_actions(self) -> List[List[str]]:
        """Compose calls reduced to their action and arguments (profiles stripped)."""
        return [self._compose_args(call)[1] for call in self.calls if call[:2] == ["docker", "compose"]]

    def events(self) -> List[str]:
        """
        A readable trace: ``up <svc>``, ``down``, ``rm <c>``, ``volume rm <v>``,
        ``network create``, ``inspect <c>``, ``exec <c>``.
        """
        trace = []
        for call in self.calls:
            if call[:2] == ["docker", "compose"]:
                _, rest = self._compose_args(call)
                if rest and rest[0] == "up":
                    services = [a for a in rest[1:] if a != "-d"]
                    trace.append("up " + (" ".join(services) or "*"))
                elif rest:
                    trace.append(rest[0])
            elif call[1:3] == ["network", "create"]:
                trace.append("network create")
            elif call[1:3] == ["network", "rm"]:
                trace.append("network rm")
            elif call[1:3] == ["volume", "rm"]:
                trace.append(f"volume rm {call[3]}")
            elif call[1:3] == ["rm", "-f"]:
                trace.append(f"rm {call[3]}")
            elif call[1] == "inspect":
                trace.append(f"inspect {call[-1]}")
            elif call[1] == "exec":
                trace.append(f"exec {call[2]}")
        return trace

    # CommandRunner interface

    def run(self, command, args=(), silent=False, timeout=None, cwd=None, env=None):
        argv = [command, *args]
        self.calls.append(argv)
        for failure in self.failures:
            if failure["times"] == 0 or not failure["match"](argv):
                continue
            if failure["times"] is not None:
                failure["times"] -= 1
            raise ProcessError(argv, failure["exit_code"], failure["stderr"], not_found=failure["not_found"])
        return CommandResult(argv, self._dispatch(argv), "", 0)

    def follow(self, command, args=(), on_line=None, cwd=None):
        follower = FakeFollower([command, *args])
        self.followers.append(follower)
        return follower

    def _error(self, argv, stderr):
        return ProcessError(argv, 1, stderr)

    def _dispatch(self, argv: List[str]) -> str:
        if argv[:2] == ["docker", "compose"]:
            return self._compose(argv)

        verb = argv[1]
        if verb == "info":
            return "Server Version: 27.0.0"
        if verb == "inspect":
            return self._inspect(argv)
        if verb == "network":
            return self._network(argv)
        if verb == "volume":
            return self._volume(argv)
        if verb == "rm":
            name = argv[-1]
            if self.containers.pop(name, None) is None:
                raise self._error(argv, f"Error response from daemon: No such container: {name}")
            return name
        if verb == "logs":
            return f"{argv[-1]}: last log line\n"
        if verb == "exec":
            container = argv[2]
            state = self.containers.get(container)
            if not state or not state.get("Running") or not self.exec_ok.get(container, True):
                raise self._error(argv, f"{container}: probe failed")
            return "ok"
        raise AssertionError(f"unexpected docker call: {argv}")

    def _inspect(self, argv):
        name = argv[-1]
        if name in self.raw_inspect:
            return self.raw_inspect[name]
        if self.inspect_states.get(name):
            sequence = self.inspect_states[name]
            state = sequence.pop(0) if len(sequence) > 1 else sequence[0]
            if state is None:
                self.containers.pop(name, None)
            else:
                self.containers[name] = dict(state)
        if name not in self.containers:
            raise self._error(argv, f"Error: No such object: {name}")
        return json.dumps([{"Name": "/" + name, "State": self.containers[name]}])

    def _network(self, argv):
        action = argv[2]
        if action == "ls":
            return "\n".join(["bridge", "host", "none", *self.networks]) + "\n"
        if action == "inspect":
            name = argv[3]
            if name not in self.networks:
                raise self._error(argv, f"Error: No such network: {name}")
            network = self.networks[name]
            if argv[-1] == "{{json .Labels}}":
                return json.dumps(network["labels"])
            return json.dumps({f"id{i}": {"Name": c} for i, c in enumerate(network["attached"])})
        if action == "create":
            name = argv[-1]
            if name in self.networks:
                raise self._error(argv, f"Error response from daemon: network with name {name} already exists")
            labels = {}
            rest = argv[3:-1]
            for flag, value in zip(rest[::2], rest[1::2]):
                assert flag == "--label"
                key, _, val = value.partition("=")
                labels[key] = val
            self.networks[name] = {"labels": labels, "attached": []}
            return "net-id"
        if action == "rm":
            name = argv[3]
            if self.networks.pop(name, None) is None:
                raise self._error(argv, f"Error response from daemon: network {name} not found")
            return name
        raise AssertionError(f"unexpected network call: {argv}")

    def _volume(self, argv):
        if argv[2] == "ls":
            return "\n".join(sorted(self.volumes)) + "\n"
        name = argv[3]
        if name not in self.volumes:
            raise self._error(argv, f"Error response from daemon: get {name}: no such volume")
        self.volumes.remove(name)
        return name

    @staticmethod
    def _compose_args(argv):
        """Splits a compose call into (profiles, remaining args)."""
        rest = argv[2:]
        profiles = []
        cleaned = []
        i = 0
        while i < len(rest):
            if rest[i] in ("-f", "-p"):
                i += 2
            elif rest[i] == "--profile":
                profiles.append(rest[i + 1])
                i += 2
            else:
                cleaned.append(rest[i])
                i += 1
        return profiles, cleaned

    def _compose(self, argv):
        _, rest = self._compose_args(argv)
        action = rest[0]
        if action == "down":
            for container, _ in COMPOSE_SERVICES.values():
                self.containers.pop(container, None)
            return ""
        if action == "up":
            services = [a for a in rest[1:] if a != "-d"] or [
                s for s in COMPOSE_SERVICES if s not in ("prisma-migrate", "minio-init")
            ]
            for service in services:
                self.ups[service] = self.ups.get(service, 0) + 1
                container, state = COMPOSE_SERVICES[service]
                scripted = self.up_states.get(service)
                if scripted:
                    state = scripted.pop(0) if len(scripted) > 1 else scripted[0]
                self.containers[container] = dict(state)
            return ""
        raise AssertionError(f"unexpected compose call: {argv}")


class FakeClock:
    """A monotonic clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_docker():
    return FakeDocker()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def project(tmp_path):
    """A project directory holding the development compose file."""
    (tmp_path / "docker-compose.dev.yml").write_text(COMPOSE_FILE)
    return tmp_path


@pytest.fixture
def port_open(monkeypatch):
    """Controls the result of TCP port probes: ``port_open["value"] = False``."""
    state = {"value": True}
    monkeypatch.setattr(health_monitor, "is_port_open", lambda host, port, timeout=1.0: state["value"])
    return state


@pytest.fixture
def make_orchestrator(project, fake_docker, clock, port_open):
    """Builds orchestrators wired to the fake docker and clock."""
    def factory(follow_logs=False, sink=null_sink, **overrides):
        config = ForgeConfig(project_root=str(project), **overrides)
        return ServiceOrchestrator(
            config,
            runner=fake_docker,
            sink=sink,
            clock=clock,
            sleep=clock.sleep,
            follow_logs=follow_logs,
        )
    return factory
