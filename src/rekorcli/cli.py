"""rekor-cli command line."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from pathlib import Path

import click

from rekorcli._version import __version__
from rekorcli.config import UploadConfig
from rekorcli.errors import RekorError, VerificationError
from rekorcli.pipeline import UploadPipeline

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes through ``click.echo`` to stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(level: str) -> logging.Logger:
    """Attach a single stderr handler to the package logger."""
    logger = logging.getLogger("rekorcli")
    for handler in list(logger.handlers):
        if isinstance(handler, ClickEchoHandler):
            logger.removeHandler(handler)

    handler = ClickEchoHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def handle_error(error: Exception, debug: bool) -> None:
    """Report a failed run and exit non-zero.

    Args:
        error: The exception that ended the run
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()

    if isinstance(error, VerificationError):
        click.echo(f"Error [{error.stage}]: Signature verification failed: {error}", err=True)
    elif isinstance(error, RekorError):
        click.echo(f"Error [{error.stage}]: {error}", err=True)
    else:
        click.echo(f"Error: {error}", err=True)

    sys.exit(getattr(error, "exit_code", 1))


@click.group()
@click.version_option(version=__version__, prog_name="rekor-cli")
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='YAML configuration file')
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default='INFO',
              help='Log level for progress output on stderr')
@click.option('--debug', is_flag=True, help='Enable debug mode (debug logging and full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str, debug: bool):
    """Rekor CLI - verify signed artifacts and record them in a transparency log."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['debug'] = debug
    ctx.obj['logger'] = configure_logging("DEBUG" if debug else log_level.upper())


@cli.command()
@click.option('--rekor-server', help='Rekor server base URL')
@click.option('--signature', type=click.Path(path_type=Path), help='Path to the detached signature')
@click.option('--public-key', type=click.Path(path_type=Path), help='Path to the signer public key')
@click.option('--artifact-url', help='HTTP(S) URL of the release artifact')
@click.option('--timeout', type=float, help='Submission timeout in seconds (default: 180)')
@click.option('--dry-run', is_flag=True, help='Verify and print the entry without submitting it')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
@click.pass_context
def upload(
    ctx: click.Context,
    rekor_server: str | None,
    signature: Path | None,
    public_key: Path | None,
    artifact_url: str | None,
    timeout: float | None,
    dry_run: bool,
    as_json: bool,
):
    """Upload a rekord entry.

    Takes the public key, signature and URL of a release artifact, verifies
    the signature over the downloaded artifact and uploads the resulting
    entry to the Rekor server.

    Examples:
      rekor-cli upload --artifact-url https://example.com/app-1.0.tar.gz \\
          --signature app-1.0.tar.gz.asc --public-key release.asc
      rekor-cli upload ... --dry-run
    """
    debug = ctx.obj.get('debug', False)
    logger = ctx.obj.get('logger')

    try:
        config = UploadConfig.load(
            ctx.obj.get('config_path'),
            rekor_server=rekor_server,
            signature=signature,
            public_key=public_key,
            artifact_url=artifact_url,
            timeout=timeout,
        )
        pipeline = UploadPipeline(config, logger=logger)

        prepared = pipeline.prepare()
        if dry_run:
            if as_json:
                click.echo(json.dumps({**prepared.to_dict(), "entry": prepared.entry.to_dict()}, indent=2))
            else:
                click.echo(prepared.payload.decode("ascii"))
            return

        result = pipeline.submit(prepared)
        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
        else:
            click.echo(f"Status: {result.status}")
    except Exception as e:
        handle_error(e, debug)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == '__main__':
    main()
