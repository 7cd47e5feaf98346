"""Command-line interface: `cloudconv convert`, `types`, `history`, `cancel`, `delete`."""
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from cloudconv import config, db
from cloudconv.api.client import CloudConvertClient
from cloudconv.batch import convert_many
from cloudconv.conversion.models import Process, UploadOptions, replace_extension
from cloudconv.conversion.service import convert_file
from cloudconv.errors import CloudConvertError, FormatError

LOGGER = logging.getLogger("cloudconv.cli")

EXIT_NO_INPUT = 1
EXIT_NO_FORMAT = 2
EXIT_NO_APIKEY = 3
EXIT_FAILED = 4

apikey_option = click.option(
    "--apikey",
    type=str,
    default="",
    help=f"API key (this, or the {config.API_KEY_ENV_NAME} environment variable, is needed).",
)


def _require_api_key(apikey: str) -> str:
    key = config.get_api_key(apikey)
    if not key:
        click.echo("API key is needed!", err=True)
        sys.exit(EXIT_NO_APIKEY)
    return key


def _parse_conversion_options(pairs: tuple[str, ...]) -> dict[str, str]:
    options = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got {pair!r}", param_hint="-O/--option")
        options[name] = value
    return options


@click.group()
@click.option("-v", "--verbose", count=True, help="-v for progress, -vv for debug output.")
def main_cli(verbose: int):
    """Convert files with the cloudconvert service."""
    level = {0: config.LOG_LEVEL, 1: "INFO"}.get(verbose, "DEBUG")
    config.configure_logging(level)


@main_cli.command("convert")
@click.argument("sources", nargs=-1, type=click.Path(path_type=Path))
@click.option("-o", "--to-file", "to_file", type=click.Path(path_type=Path), default=None,
              help="Destination file name (single-file mode).")
@apikey_option
@click.option("--fromfmt", default="", help="Source format (default: from the input file name).")
@click.option("--tofmt", default="", help="Destination format; this or --to-file is needed.")
@click.option("--wait", "poll_interval", type=float, default=config.POLL_INTERVAL, show_default=True,
              help="Poll interval in seconds when the service reports no progress.")
@click.option("--batch", is_flag=True, default=False,
              help="Convert every SOURCE to --tofmt, skipping files already converted earlier.")
@click.option("--output", default="", help="Send the result to this storage target instead of downloading it.")
@click.option("--callback", default="", help="URL the service calls when the conversion ends.")
@click.option("--email", is_flag=True, default=False, help="Ask the service to send a notification e-mail.")
@click.option("-O", "--option", "conversion_options", multiple=True, metavar="NAME=VALUE",
              help="Converter-specific option; may be repeated.")
@click.option("--concurrency", type=click.IntRange(min=1), default=config.MAX_CONCURRENT_CONVERSIONS,
              show_default=True, help="Simultaneous conversions in batch mode.")
@click.option("--ledger/--no-ledger", "use_ledger", default=True, help="Record batch runs in the local database.")
def convert_cli(
    sources: tuple[Path, ...],
    to_file: Optional[Path],
    apikey: str,
    fromfmt: str,
    tofmt: str,
    poll_interval: float,
    batch: bool,
    output: str,
    callback: str,
    email: bool,
    conversion_options: tuple[str, ...],
    concurrency: int,
    use_ledger: bool,
):
    """Upload SOURCE files, wait for the conversion and download the results."""
    if not sources:
        click.echo("A file name to upload is needed.", err=True)
        sys.exit(EXIT_NO_INPUT)
    missing = [s for s in sources if not s.is_file()]
    if missing:
        click.echo(f"Input file not found: {', '.join(str(m) for m in missing)}", err=True)
        sys.exit(EXIT_NO_INPUT)
    options = UploadOptions(
        email=email,
        output=output,
        callback=callback,
        conversion_options=_parse_conversion_options(conversion_options),
    )

    if batch:
        if not tofmt:
            click.echo("--tofmt is needed in batch mode!", err=True)
            sys.exit(EXIT_NO_FORMAT)
        client = CloudConvertClient(_require_api_key(apikey))
        if use_ledger:
            db.init_db()
        try:
            result = convert_many(
                client,
                list(sources),
                tofmt,
                concurrency=concurrency,
                options=options,
                use_ledger=use_ledger,
                from_format=fromfmt,
                poll_interval=poll_interval,
            )
        except CloudConvertError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(EXIT_FAILED)
        for f in result.files:
            mark = "ok" if f.ok else f"FAILED: {f.error}"
            note = " (from history)" if f.from_history else ""
            click.echo(f"{f.source} -> {f.destination}: {mark}{note}")
        if result.failed:
            sys.exit(EXIT_FAILED)
        return

    if len(sources) > 1:
        click.echo("Several files given; use --batch.", err=True)
        sys.exit(EXIT_NO_INPUT)
    source = sources[0]
    if to_file is None:
        if not tofmt:
            click.echo("--tofmt or a destination file name (--to-file) is needed!", err=True)
            sys.exit(EXIT_NO_FORMAT)
        to_file = Path(replace_extension(source, tofmt))
    client = CloudConvertClient(_require_api_key(apikey))
    try:
        conversion = convert_file(
            client,
            source,
            to_file,
            from_format=fromfmt,
            to_format=tofmt,
            options=options,
            poll_interval=poll_interval,
        )
    except FormatError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_NO_FORMAT)
    except CloudConvertError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(EXIT_FAILED)
    LOGGER.info("Done: %s", conversion.destination)
    click.echo(str(conversion.destination) if not output else f"{source}: sent to {output}")


@main_cli.command("types")
@click.option("--fromfmt", default="", help="Only conversions from this format.")
@click.option("--tofmt", default="", help="Only conversions to this format.")
def types_cli(fromfmt: str, tofmt: str):
    """List the conversions the service supports."""
    client = CloudConvertClient(config.get_api_key())
    try:
        types = client.conversion_types(fromfmt, tofmt)
    except CloudConvertError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(EXIT_FAILED)
    for t in types:
        click.echo(f"{t.inputformat} -> {t.outputformat}\t{t.converter}")


@main_cli.command("history")
@apikey_option
def history_cli(apikey: str):
    """List past processes for the API key."""
    client = CloudConvertClient(_require_api_key(apikey))
    try:
        entries = client.list_history()
    except CloudConvertError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(EXIT_FAILED)
    for h in entries:
        click.echo(f"{h.id}\t{h.step}\t{h.status.input.filename or '-'}\t{h.status.output.url or '-'}")


def _control(url: str, action: str) -> None:
    client = CloudConvertClient(config.get_api_key())
    try:
        getattr(client, action)(Process(url=url))
    except CloudConvertError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(EXIT_FAILED)


@main_cli.command("cancel")
@click.argument("process_url")
def cancel_cli(process_url: str):
    """Cancel a running process. It cannot be resumed."""
    _control(process_url, "cancel")


@main_cli.command("delete")
@click.argument("process_url")
def delete_cli(process_url: str):
    """Delete a process and its files."""
    _control(process_url, "delete")
