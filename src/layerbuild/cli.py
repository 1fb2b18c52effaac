import click
import logging
import signal
import traceback
from pathlib import Path

import yaml

from .config import Config, FORMAT_YAML, FORMAT_DOCKERFILE
from .builder import Builder
from .runners import create_runner, RUNNERS
from .utils import setup_logger, parse_module_levels
from .exceptions import (
    LayerBuildError,
    ConfigurationError,
    DefinitionError,
    BuildError,
    StepFailure,
    BuildCancelled,
)
from . import constants
from . import __version__


def complete_recipe_files(ctx, param, incomplete):
    """Auto-complete recipe files (.yml, .yaml, Dockerfile) in current directory"""
    try:
        cwd = Path.cwd()
        candidates = list(cwd.glob('*.yml')) + list(cwd.glob('*.yaml')) + list(cwd.glob('*Dockerfile*'))
        return sorted(f.name for f in candidates if f.name.startswith(incomplete))
    except OSError as e:
        logging.debug(f"Recipe file auto-completion failed: {e}")
        return []


def setup_logging(debug: bool, log_levels: str = None, log_file: str = None):
    """Setup logger with debug and module-level configuration"""
    setup_logger(debug=debug, module_levels=parse_module_levels(log_levels), log_file=log_file)


def _abort(message: str):
    logging.error(message)
    ctx = click.get_current_context()
    if ctx.obj and ctx.obj.get('debug'):
        traceback.print_exc()
    raise click.Abort()


def handle_errors(func):
    """Decorator to handle common exceptions"""
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigurationError as e:
            _abort(f"Configuration error: {e}")
        except DefinitionError as e:
            _abort(f"Definition error: {e}")
        except StepFailure as e:
            _abort(f"Build failed at step {e.index + 1} '{e.name}': {e}")
        except BuildCancelled as e:
            _abort(f"Build cancelled: {e}")
        except BuildError as e:
            _abort(f"Build error: {e}")
        except LayerBuildError as e:
            _abort(f"An unexpected application error occurred: {e}")
        except FileNotFoundError as e:
            _abort(f"A required file was not found: {e}")
    return wrapper


def make_runner(name: str, config: Config, output: str, rootfs: str, pull: bool):
    if name == constants.RUNNER_LOCAL:
        rootfs = rootfs or str(Path(output) / config.name / "rootfs")
        logging.info(f"Using local rootfs '{rootfs}'")
        return create_runner(name, rootfs=rootfs)
    if name == constants.RUNNER_DOCKER:
        return create_runner(name, pull=pull)
    return create_runner(name)


@handle_errors
def do_build(recipe: str, fmt: str, runner_name: str, tag: str, output: str,
             context: str, rootfs: str, pull: bool, report: bool):
    """Execute build command"""
    config = Config(recipe, fmt)
    runner = make_runner(runner_name, config, output, rootfs, pull)
    builder = Builder(config, runner, tag=tag, output_dir=output, context_dir=context, write=report)

    def on_term(signum, frame):
        logging.warning(f"Received signal {signum}, cancelling build...")
        builder.cancel()

    previous = signal.signal(signal.SIGTERM, on_term)
    try:
        result = builder.run()
    finally:
        signal.signal(signal.SIGTERM, previous)

    click.echo(result.snapshot.active)
    if builder.report:
        logging.info(f"Build report: {builder.report}")


@handle_errors
def do_plan(recipe: str, fmt: str, context: str):
    """Execute plan command"""
    config = Config(recipe, fmt)
    builder = Builder(config, create_runner(constants.RUNNER_SCRIPTED), context_dir=context, write=False)
    steps = builder.plan()
    data = {
        'name': config.name,
        'base': config.base.reference,
        'steps': [step.model_dump(mode='json', exclude_none=True) for step in steps],
    }
    click.echo(yaml.safe_dump(data, sort_keys=False, default_flow_style=False), nl=False)


@handle_errors
def do_validate(recipe: str, fmt: str):
    """Execute validate command"""
    config = Config(recipe, fmt)
    click.echo(f"Recipe '{config.name}' is valid: {len(config.steps)} steps on '{config.base}'.")


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('-l', '--log-levels', help="Comma-separated per-module log levels (e.g., 'pipe=DEBUG,docker=INFO')")
@click.option('-f', '--log-file', help='Path to log file')
@click.version_option(version=__version__, prog_name='layerbuild')
@click.pass_context
def cli(ctx, debug, log_levels, log_file):
    """layerbuild - Build images layer by layer from a recipe

    \b
    Examples:
      lbuild build recipe.yml              Build with docker
      lbuild build Dockerfile --dry-run    Walk the steps without running them
      lbuild plan recipe.yml               Show the compiled steps
    """
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    setup_logging(debug, log_levels, log_file)


format_option = click.option(
    '--format', 'fmt', type=click.Choice([FORMAT_YAML, FORMAT_DOCKERFILE]),
    help='Recipe format (default: detected from the file name)',
)
context_option = click.option('-C', '--context', help='Build context directory (default: recipe directory)')


@cli.command()
@click.argument('recipe', shell_complete=complete_recipe_files)
@format_option
@context_option
@click.option('-r', '--runner', 'runner_name', type=click.Choice(sorted(RUNNERS)),
              default=constants.RUNNER_DOCKER, show_default=True, help='Backend that executes the steps')
@click.option('--dry-run', is_flag=True, help='Run with the scripted runner; no process is started')
@click.option('-t', '--tag', help='Tag for the final image (default: <name>:latest)')
@click.option('-o', '--output', default=constants.OUTPUT_DIR, show_default=True, help='Directory for build reports')
@click.option('--rootfs', help='Root directory for the local runner (default: <output>/<name>/rootfs)')
@click.option('--no-pull', is_flag=True, help='Use the local copy of the base image instead of pulling it')
@click.option('--no-report', is_flag=True, help='Do not write a build report')
@click.option('--debug', is_flag=True, help='Enable debug logging for this command')
@click.pass_context
def build(ctx, recipe, fmt, context, runner_name, dry_run, tag, output, rootfs, no_pull, no_report, debug):
    """Build an image from RECIPE"""
    if debug and not ctx.obj.get('debug'):
        ctx.obj['debug'] = True
        setup_logging(debug=True)
    if dry_run:
        runner_name = constants.RUNNER_SCRIPTED
    do_build(recipe, fmt, runner_name, tag, output, context, rootfs, not no_pull, not no_report)


@cli.command()
@click.argument('recipe', shell_complete=complete_recipe_files)
@format_option
@context_option
def plan(recipe, fmt, context):
    """Print the steps RECIPE compiles to, in execution order"""
    do_plan(recipe, fmt, context)


@cli.command()
@click.argument('recipe', shell_complete=complete_recipe_files)
@format_option
def validate(recipe, fmt):
    """Check that RECIPE loads and validates"""
    do_validate(recipe, fmt)
