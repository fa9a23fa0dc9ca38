# candidateparser/cli.py
import json
import logging
import sys
from typing import Iterable, List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table
from rich import box
from rich.markup import escape

from .candidates import IceCandidate, encode_text
from .config import load_settings, Settings
from .errors import ParseError
from .ffi import marshal, unmarshal, release
from .logging_config import setup_logging
from .parser import parse
from .util import display_bytes, display_optional


app = typer.Typer(add_completion=False, help="ICE candidate lines → structured records")
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("candidateparser.cli")


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, help="Override CANDIDATEPARSER_LOG_LEVEL"),
):
    try:
        s = load_settings()
    except RuntimeError as e:
        err_console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=2)

    level = s.log_level
    if log_level:
        level = logging.getLevelName(log_level.upper())
        if not isinstance(level, int):
            raise typer.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")
    setup_logging(level)
    ctx.obj = s


def _read_lines(lines: Optional[List[str]], file: Optional[str]) -> List[str]:
    out = list(lines or [])
    if file == "-":
        out += sys.stdin.read().splitlines()
    elif file:
        with open(file, "r", encoding="utf-8", errors="surrogateescape") as fh:
            out += fh.read().splitlines()
    return [ln for ln in out if ln.strip()]


def _through_boundary(candidate: IceCandidate) -> IceCandidate:
    handle = marshal(candidate)
    try:
        return unmarshal(handle)
    finally:
        release(handle)


def _parse_all(lines: Iterable[str], via_ffi: bool) -> Tuple[List[IceCandidate], int]:
    parsed, failed = [], 0
    for idx, line in enumerate(lines, start=1):
        try:
            c = parse(line)
        except ParseError as e:
            failed += 1
            err_console.print(f"[red]line {idx}: {e.kind.value}: {escape(str(e))}[/red]")
            logger.warning("Line %d rejected (%s, field=%s)", idx, e.kind.value, e.field)
            continue
        if via_ffi:
            c = _through_boundary(c)
        parsed.append(c)
    return parsed, failed


def _cell(value: Optional[object], replacement: str) -> str:
    if isinstance(value, str):
        value = encode_text(value)
    if isinstance(value, bytes):
        return escape(display_bytes(value, replacement))
    return display_optional(value)


def _candidate_table(c: IceCandidate, replacement: str) -> Table:
    table = Table(title=f"candidate {_cell(c.foundation, replacement)}", box=box.SIMPLE_HEAVY)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Foundation", _cell(c.foundation, replacement))
    table.add_row("Component ID", str(c.component_id))
    table.add_row("Transport", _cell(c.transport, replacement))
    table.add_row("Priority", str(c.priority))
    table.add_row("Address", _cell(c.connection_address, replacement))
    table.add_row("Port", str(c.port))
    table.add_row("Type", _cell(c.candidate_type, replacement))
    table.add_row("Rel Addr", _cell(c.rel_address, replacement))
    table.add_row("Rel Port", _cell(c.rel_port, replacement))
    if not c.extensions:
        table.add_row("Extensions", "-")
    for key, value in c.extensions:
        table.add_row(f"  {_cell(key, replacement)}", _cell(value, replacement))
    return table


@app.command("parse")
def parse_cmd(
    ctx: typer.Context,
    lines: Optional[List[str]] = typer.Argument(None, help="Candidate lines, e.g. 'candidate:1 1 udp 100 1.1.1.1 1000 typ host'"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Read one candidate per line ('-' for stdin)"),
    as_json: Optional[bool] = typer.Option(None, "--json/--table", help="Output format (default from CANDIDATEPARSER_OUTPUT)"),
    via_ffi: bool = typer.Option(False, "--ffi", help="Round-trip every record through the C boundary"),
):
    s: Settings = ctx.obj
    candidates, failed = _parse_all(_read_lines(lines, file), via_ffi)
    use_json = as_json if as_json is not None else s.output == "json"

    if use_json:
        typer.echo(json.dumps([c.to_public(s.replacement) for c in candidates], indent=2))
    else:
        for c in candidates:
            console.print(_candidate_table(c, s.replacement))

    if failed:
        raise typer.Exit(code=1)


@app.command("check")
def check_cmd(
    lines: Optional[List[str]] = typer.Argument(None, help="Candidate lines to validate"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Read one candidate per line ('-' for stdin)"),
):
    """Validate lines without printing the records."""
    candidates, failed = _parse_all(_read_lines(lines, file), via_ffi=False)
    colour = "red" if failed else "green"
    console.print(f"[{colour}]{len(candidates)} ok, {failed} failed[/{colour}]")
    if failed:
        raise typer.Exit(code=1)


def main():
    app()

if __name__ == "__main__":
    main()
