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
Command Line Interface for redeploy.
"""
import json

import click
import structlog

from .. import __version__
from ..COMPILER.service_compiler import compile_all
from ..ENGINE.engine_client import DockerEngineClient
from ..errors import ConfigurationError, EngineError
from ..MANAGERS.callback_notifier import CallbackNotifier
from ..MANAGERS.redeploy_orchestrator import RedeployOrchestrator
from ..PARSERS.compose_parser import ComposeParser
from ..REGISTRY.image_index import ImageIndex
from ..UTILS.log_config import LOG_LEVELS, configure_logging

logger = structlog.get_logger(__name__)


@click.group()
@click.option('--config', '-c', 'config_file', default='services.yaml', show_default=True,
              envvar='REDEPLOY_CONFIG', help='The service file to use.')
@click.option('--log-level', type=click.Choice(LOG_LEVELS), default='info', show_default=True,
              envvar='REDEPLOY_LOG_LEVEL', help='Minimum level of emitted log lines.')
@click.option('--log-format', type=click.Choice(['console', 'json']), default='console',
              show_default=True, envvar='REDEPLOY_LOG_FORMAT', help='Log line format.')
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, config_file, log_level, log_format):
    """
    redeploy - replace containers when their image is pushed.

    Serves Docker Hub webhooks and redeploys the services of a compose-style
    service file that use the pushed image.
    """
    ctx.ensure_object(dict)
    configure_logging(log_level, log_format)
    ctx.obj['file'] = config_file


def load_config(ctx):
    """
    Parses and validates the service file, exiting on configuration errors.
    """
    config_file = ctx.obj['file']
    try:
        config = ComposeParser.for_file(config_file).parse(config_file)
        specs = compile_all(config)
    except ConfigurationError as e:
        click.echo(f"Error: failed to parse config: {e}", err=True)
        ctx.exit(1)
    return config, specs


@cli.command()
@click.option('--host', default='', envvar='REDEPLOY_HOST', help='The local address to serve on.')
@click.option('--port', default=8555, show_default=True, type=int, envvar='REDEPLOY_PORT',
              help='The port to serve on.')
@click.option('--path', default='', envvar='REDEPLOY_PATH',
              help='The path to serve webhooks on. If unspecified, serves on /.')
@click.option('--tls-cert', type=click.Path(exists=True, dir_okay=False), envvar='REDEPLOY_TLS_CERT',
              help='The x509 certificate to serve with, in PEM format.')
@click.option('--tls-key', type=click.Path(exists=True, dir_okay=False), envvar='REDEPLOY_TLS_KEY',
              help='The private key to serve with, in PEM format.')
@click.pass_context
def serve(ctx, host, port, path, tls_cert, tls_key):
    """Serve webhooks until interrupted."""
    import uvicorn
    from ..SERVER.webhook_app import create_app

    config, _ = load_config(ctx)

    try:
        engine = DockerEngineClient.from_env()
    except EngineError as e:
        click.echo(f"Error: failed to connect to the container engine: {e}", err=True)
        ctx.exit(1)

    orchestrator = RedeployOrchestrator(config, engine)
    app = create_app(orchestrator, CallbackNotifier(), path=path)

    use_tls = bool(tls_cert and tls_key)
    logger.info("serving", url=f"{'https' if use_tls else 'http'}://{host or '0.0.0.0'}:{port}/{path}")
    uvicorn.run(
        app,
        host=host or '0.0.0.0',
        port=port,
        ssl_certfile=tls_cert if use_tls else None,
        ssl_keyfile=tls_key if use_tls else None,
        log_level=ctx.parent.params['log_level'],
    )
    logger.info("shut_down_gracefully")


@cli.command()
@click.pass_context
def check(ctx):
    """Validate the service file and print the compiled containers."""
    _, specs = load_config(ctx)
    payloads = {name: spec.to_engine_payload() for name, spec in specs.items()}
    click.echo(json.dumps(payloads, indent=2))


@cli.command()
@click.pass_context
def images(ctx):
    """List the images watched and the services they redeploy."""
    config, _ = load_config(ctx)
    index = ImageIndex.build(config.services)
    click.echo(f"{'IMAGE':40} {'SERVICES'}")
    click.echo("-" * 60)
    for image in index.images():
        names = ", ".join(s.name for s in index.resolve(image))
        click.echo(f"{image:40} {names}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
