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
Command Line Interface for zephyr-forge.
"""
import os
import signal
import time

import click

from ..CONVERTERS.env_writer import DEFAULTS, EnvFileWriter
from ..exceptions import ForgeError, ServiceInitError
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MODELS.forge_config import ForgeConfig
from ..MODELS.orchestration_result import OperationMode, OrchestrationResult
from ..PARSERS.env_parser import check_env_files
from ..UTILS.project import find_project_root, validate_project_structure

REQUIRED_FILES = ['docker-compose.dev.yml', '.env', 'package.json']
MODE_CHOICES = [mode.value for mode in OperationMode]
URLS = {
    'api': 'http://localhost:3456',
    'web': 'http://localhost:3000',
    'minio': 'http://localhost:9001',
}


@click.group()
@click.option('--project-root', '-C', default=None, type=click.Path(file_okay=False),
              help='Project directory (searched upwards from the current directory by default)')
@click.option('--compose-file', '-f', default=None, help='Compose file, relative to the project root')
@click.option('--follow-logs', is_flag=True, help='Stream container logs while initializing')
@click.pass_context
def cli(ctx, project_root, compose_file, follow_logs):
    """
    zephyr-forge - local development environment for Zephyr.

    Brings up PostgreSQL, Redis and MinIO with Docker Compose and checks
    that they are ready to use.
    """
    ctx.ensure_object(dict)
    ctx.obj['root_found'] = True
    if project_root is None:
        try:
            project_root = find_project_root(os.getcwd())
        except ForgeError:
            project_root = os.getcwd()
            ctx.obj['root_found'] = False
    ctx.obj['project_root'] = project_root
    if 'orchestrator' not in ctx.obj:
        try:
            config = ForgeConfig.load(project_root, compose_file=compose_file)
        except ForgeError as e:
            _fail(e)
        ctx.obj['config'] = config
        ctx.obj['orchestrator'] = ServiceOrchestrator(config, sink=click.echo, follow_logs=follow_logs)


def _fail(error: Exception):
    click.echo(f"Error: {error}")
    if isinstance(error, ServiceInitError):
        if error.issues:
            click.echo("Issues:")
            for issue in error.issues:
                click.echo(f"  - {issue}")
        if error.logs:
            click.echo(f"Recent logs of {error.service}:")
            for line in error.logs:
                click.echo(f"  {line}")
    raise SystemExit(1)


def _print_status(result: OrchestrationResult):
    click.echo(f"{'SERVICE':15} {'STATUS':10} {'INIT':12} {'READY':5}")
    click.echo("-" * 45)
    for name, report in result.per_service.items():
        if report.init_job is None:
            init = "-"
        else:
            init = "done" if report.init_completed else "pending"
        ready = "yes" if report.ready else "no"
        click.echo(f"{name:15} {report.state.value:10} {init:12} {ready:5}")
    if result.issues:
        click.echo("")
        for issue in result.issues:
            click.echo(f"  - {issue}")


def _choose_mode(mode, assume_yes):
    if mode is None and assume_yes:
        mode = OperationMode.USE_EXISTING.value
    elif mode is None:
        mode = click.prompt(
            'How should existing containers and data be handled?',
            type=click.Choice(MODE_CHOICES),
            default=OperationMode.USE_EXISTING.value,
        )
    mode = OperationMode(mode)
    if mode is OperationMode.FRESH and not assume_yes:
        click.confirm('This removes all containers and their data volumes. Continue?', abort=True)
    return mode


def _initialize(orchestrator: ServiceOrchestrator, mode: OperationMode):
    try:
        result = orchestrator.initialize(mode)
    except ForgeError as e:
        _fail(e)
    _print_status(result)
    return result


@cli.command()
@click.pass_context
def status(ctx):
    """Show the state of every managed service."""
    result = ctx.obj['orchestrator'].status()
    _print_status(result)
    if result.needs_init:
        click.echo("\nServices need initialization. Run `zforge init`.")


@cli.command()
@click.option('--mode', '-m', type=click.Choice(MODE_CHOICES), default=None, help='Teardown policy before bring-up')
@click.option('--yes', '-y', 'assume_yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def init(ctx, mode, assume_yes):
    """Initialize all services and wait until they are ready."""
    orchestrator = ctx.obj['orchestrator']
    _initialize(orchestrator, _choose_mode(mode, assume_yes))
    click.echo("Services initialized.")


@cli.command()
@click.pass_context
def start(ctx):
    """Start services without readiness checks."""
    try:
        ctx.obj['orchestrator'].start()
    except ForgeError as e:
        _fail(e)


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop all services. Data volumes are kept."""
    try:
        ctx.obj['orchestrator'].stop()
    except ForgeError as e:
        _fail(e)


@cli.command()
@click.pass_context
def health(ctx):
    """Run every readiness check once."""
    report = ctx.obj['orchestrator'].health()
    for name, svc in report.services.items():
        click.echo(f"{name:15} {svc.status}")
    if not report.healthy:
        click.echo("Service health check failed:")
        for issue in report.issues:
            click.echo(f"  - {issue}")
        raise SystemExit(1)
    click.echo("All services are healthy")


@cli.command()
@click.option('--automatic/--manual', default=True, help='Use defaults or enter every value')
@click.option('--force', is_flag=True, help='Overwrite an existing .env')
@click.pass_context
def setup(ctx, automatic, force):
    """Check the project layout and Docker, then create the development .env file."""
    project_root = ctx.obj['project_root']
    missing = validate_project_structure(project_root)
    if missing:
        _fail(ForgeError(f"Invalid project structure: {', '.join(missing)}"))

    try:
        ctx.obj['orchestrator'].ensure_runtime()
    except ForgeError as e:
        _fail(e)
    click.echo("Docker environment ready")

    target = os.path.join(project_root, '.env')
    if os.path.exists(target) and not force:
        click.confirm(f'{target} exists. Overwrite it?', abort=True)

    overrides = {}
    if not automatic:
        for key, default in DEFAULTS.items():
            overrides[key] = click.prompt(key, default=default)

    path = EnvFileWriter(project_root).write(overrides)
    click.echo(f"Environment file written to {path}")
    click.echo("Setup complete! Run `zforge dev` to start developing.")


@cli.command(name='env:check')
@click.pass_context
def env_check(ctx):
    """Validate the project's .env file."""
    problems = check_env_files(ctx.obj['project_root'])
    if problems:
        click.echo("Environment validation failed:")
        for name, issues in problems.items():
            for issue in issues:
                click.echo(f"  - {name}: {issue}")
        raise SystemExit(1)
    click.echo("Environment is valid.")


@cli.command()
@click.option('--mode', '-m', type=click.Choice(MODE_CHOICES), default=None, help='Teardown policy if initialization is needed')
@click.option('--yes', '-y', 'assume_yes', is_flag=True, help='Answer yes to every question')
@click.option('--detach', '-d', is_flag=True, help='Leave services running and exit once they are verified')
@click.pass_context
def dev(ctx, mode, assume_yes, detach):
    """
    Check, initialize if needed, and verify the development environment.

    Unless --detach is given, keeps running afterwards and stops the
    services on Ctrl+C or SIGTERM.
    """
    project_root = ctx.obj['project_root']
    orchestrator = ctx.obj['orchestrator']

    if not ctx.obj.get('root_found', True):
        _fail(ForgeError("Not in a Zephyr project directory. Please run this command from your project root."))

    missing = [f for f in REQUIRED_FILES if not os.path.exists(os.path.join(project_root, f))]
    if missing:
        _fail(ForgeError(f"Missing required file: {', '.join(missing)}"))

    problems = check_env_files(project_root)
    if problems:
        details = "; ".join(f"{name}: {issue}" for name, issues in problems.items() for issue in issues)
        _fail(ForgeError(f"Environment validation failed: {details}"))

    result = orchestrator.status()
    _print_status(result)

    if result.needs_init:
        if assume_yes or click.confirm('Services need initialization. Would you like to proceed?', default=True):
            _initialize(orchestrator, _choose_mode(mode, assume_yes))
        else:
            click.echo("Operation cancelled")
            return
    elif result.running and not assume_yes:
        if click.confirm('Services are already running. Restart them?', default=False):
            try:
                orchestrator.stop()
                orchestrator.start()
            except ForgeError as e:
                _fail(e)

    report = orchestrator.health()
    if not report.healthy:
        _fail(ForgeError("Service health check failed:\n" + "\n".join(f"- {i}" for i in report.issues)))

    click.echo("All services are healthy")
    for name, url in URLS.items():
        click.echo(f"  {name:6} {url}")
    click.echo("Development environment is running!")

    if detach:
        return

    click.echo("Press Ctrl+C to stop the services.")
    try:
        _wait_for_shutdown()
    except KeyboardInterrupt:
        click.echo("Shutting down services...")
        try:
            orchestrator.stop()
        except ForgeError as e:
            _fail(e)
        click.echo("Development environment shutdown complete")


def _wait_for_shutdown():
    """Blocks until Ctrl+C; SIGTERM is treated the same way."""
    def on_terminate(signum, frame):
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGTERM, on_terminate)
    try:
        while True:
            time.sleep(1)
    finally:
        signal.signal(signal.SIGTERM, previous)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
