from __future__ import annotations

import json
import sys

import click

import httpchain

# ---------------------------------------------------------------------------
# Rich output helpers (graceful fallback when rich is not installed)
# ---------------------------------------------------------------------------

try:
    from rich.console import Console
    from rich.syntax import Syntax
    from rich.text import Text

    HAS_RICH = True
except ImportError:  # pragma: no cover
    HAS_RICH = False


def _status_color(status_code: int) -> str:
    if status_code < 200:
        return "cyan"
    elif status_code < 300:
        return "green"
    elif status_code < 400:
        return "yellow"
    elif status_code < 500:
        return "red"
    else:
        return "bold red"


def is_binary_content_type(content_type: str) -> bool:
    text_types = (
        "text/",
        "application/json",
        "application/xml",
        "application/x-www-form-urlencoded",
    )
    ct = content_type.lower().split(";")[0].strip()
    return not any(ct.startswith(t) for t in text_types) and ct != ""


def _body_lines(response: httpchain.Response) -> list[str]:
    content = response.body_raw()
    if not content:
        return []
    content_type = response.get_header("content-type")
    if is_binary_content_type(content_type) or b"\0" in content:
        return [f"<{len(content)} bytes of binary data>"]
    if "application/json" in content_type:
        try:
            return [json.dumps(response.json(), indent=4, ensure_ascii=False)]
        except ValueError:
            pass
    return [response.body_string()]


def format_response_plain(response: httpchain.Response) -> str:
    lines = [f"HTTP/1.1 {response.status}"]
    for key, value in response.headers.multi_items():
        lines.append(f"{key}: {value}")
    lines.append("")
    lines.extend(_body_lines(response))
    return "\n".join(lines)


def print_response_rich(console: Console, response: httpchain.Response) -> None:
    color = _status_color(response.status_code)

    status_line = Text()
    status_line.append("HTTP/1.1 ", style="bold dim")
    status_line.append(response.status, style=f"bold {color}")
    console.print(status_line)

    for key, value in response.headers.multi_items():
        header_text = Text()
        header_text.append(key, style="dim cyan")
        header_text.append(": ", style="dim")
        header_text.append(value)
        console.print(header_text)

    console.print()

    body = _body_lines(response)
    if body and "application/json" in response.get_header("content-type"):
        console.print(Syntax(body[0], "json", theme="monokai"))
    elif body:
        console.print(body[0])


def parse_header(header: str) -> tuple[str, str]:
    """Parse a curl-style ``Key: Value`` header."""
    if ":" not in header:
        raise click.BadParameter(
            f"Invalid header format: '{header}'. Expected 'Key: Value'."
        )
    key, _, value = header.partition(":")
    return key.strip(), value.strip()


def parse_query(param: str) -> tuple[str, str]:
    if "=" not in param:
        raise click.BadParameter(
            f"Invalid query parameter: '{param}'. Expected 'key=value'."
        )
    key, _, value = param.partition("=")
    return key, value


# ---------------------------------------------------------------------------
# CLI command
# ---------------------------------------------------------------------------


@click.command(help="Build and send a single HTTP request.")
@click.argument("url")
@click.option("-m", "--method", default="GET", help="HTTP method.")
@click.option(
    "-H",
    "--header",
    "headers",
    multiple=True,
    help='Add a header, e.g. -H "Authorization: Bearer token".',
)
@click.option(
    "-q", "--query", "query", multiple=True, help="Add a query parameter key=value."
)
@click.option("-j", "--json-data", "json_body", default=None, help="JSON data to send.")
@click.option(
    "-c", "--content", default=None, help="Content to send in the request body."
)
@click.option(
    "--timeout", default=0.0, type=float, help="Timeout in seconds (0 disables)."
)
@click.option(
    "--stream", is_flag=True, default=False, help="Print the body as it arrives."
)
@click.option("--debug", is_flag=True, default=False, help="Log wire dumps.")
@click.option(
    "--no-color", is_flag=True, default=False, help="Disable colored output."
)
def main(
    url: str,
    method: str,
    headers: tuple[str, ...],
    query: tuple[str, ...],
    json_body: str | None,
    content: str | None,
    timeout: float,
    stream: bool,
    debug: bool,
    no_color: bool,
) -> None:
    use_rich = HAS_RICH and not no_color and sys.stdout.isatty()

    with httpchain.Client() as client:
        client.set_debug(debug, include_body=debug).set_log_enabled(debug)
        client.set_log_output(sys.stderr)

        request = (
            client.new_request()
            .set_base_url(url)
            .set_method(method)
            .set_timeout(timeout)
        )
        for h in headers:
            request.add_header(*parse_header(h))
        for q in query:
            request.add_query_param(*parse_query(q))

        if json_body is not None:
            try:
                request.body_json(json.loads(json_body))
            except ValueError as exc:
                raise click.BadParameter(f"Invalid JSON: {exc}") from exc
        elif content is not None:
            request.body_raw(content)

        try:
            if stream:
                status_code = _stream(request)
            else:
                response = request.do()
                status_code = response.status_code
                if use_rich:
                    print_response_rich(Console(), response)
                else:
                    click.echo(format_response_plain(response))
        except httpchain.HTTPChainError as exc:
            if use_rich:
                console = Console(stderr=True)
                console.print(f"[bold red]{type(exc).__name__}[/bold red]: {exc}")
            else:
                click.echo(f"{type(exc).__name__}: {exc}", err=True)
            sys.exit(1)

    if status_code >= 400:
        sys.exit(1)


def _stream(request: httpchain.Request) -> int:
    with request.do_stream() as response:
        click.echo(f"HTTP/1.1 {response.status}")
        for key, value in response.headers.multi_items():
            click.echo(f"{key}: {value}")
        click.echo()
        for chunk in response:
            click.echo(chunk.decode("utf-8", errors="replace"), nl=False)
        click.echo()
        return response.status_code
