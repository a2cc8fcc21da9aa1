"""CLI interface for the chat gateway."""

import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .errors import GatewayError

console = Console()


def setup_logging(verbose: bool = False):
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_time=False)],
    )


def _build_gateway():
    from .config import build_registry, load_settings
    from .gateway import ChatGateway

    registry = build_registry(load_settings())
    if not len(registry):
        console.print("[red]Error: No provider configured[/red]")
        console.print("\nSet at least one API key:")
        console.print("  export DEEPSEEK_API_KEY=sk-...")
        console.print("  export GLM_API_KEY=...")
        console.print("  export IFLOW_API_KEY=...")
        sys.exit(1)
    return ChatGateway(registry)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(verbose: bool):
    """Chat with DeepSeek, GLM and iFlow models through one interface."""
    # Load environment variables
    load_dotenv()

    # Setup logging
    setup_logging(verbose)


@cli.command()
@click.argument("model")
@click.argument("prompt")
@click.option("--image", "-i", "images", multiple=True, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Image file to attach (repeatable)")
@click.option("--file", "-f", "file_urls", multiple=True, type=str, help="HTTP(S) file URL to attach (repeatable)")
@click.option("--system", "-s", "system_prompt", type=str, help="System prompt")
@click.option("--max-tokens", type=int, help="Maximum response tokens")
@click.option("--temperature", "-t", type=float, help="Sampling temperature (0-2)")
@click.option("--json", "as_json", is_flag=True, help="Print the raw response as JSON")
@click.pass_context
def chat(
    ctx: click.Context,
    model: str,
    prompt: str,
    images: tuple[Path, ...],
    file_urls: tuple[str, ...],
    system_prompt: str | None,
    max_tokens: int | None,
    temperature: float | None,
    as_json: bool,
):
    """Send PROMPT to MODEL.

    Examples:

        chat-gateway chat deepseek-chat "Explain list comprehensions"

        chat-gateway chat glm-4.1v-thinking-flash "What's in this image?" -i photo.jpg

        chat-gateway chat glm-4v-plus-0111 "Summarize" -f https://example.com/report.pdf
    """
    from .image_processor import UploadedFile
    from .providers.base import ChatRequest, ContentItem, Message

    gateway = _build_gateway()

    messages = []
    if system_prompt:
        messages.append(Message("system", system_prompt))
    if file_urls:
        items = (ContentItem.text_item(prompt),) + tuple(ContentItem.file(url) for url in file_urls)
        messages.append(Message("user", items))
    else:
        messages.append(Message("user", prompt))

    request = ChatRequest(
        model=model,
        messages=tuple(messages),
        max_tokens=max_tokens,
        temperature=temperature,
    )

    def send_request():
        if images:
            uploads = [UploadedFile.from_path(path) for path in images]
            return gateway.chat_with_files(request, uploads)
        return gateway.chat(request)

    response = _ask(model, send_request)
    _print_response(response, as_json)


@cli.command()
@click.argument("request_file", type=click.File("r", encoding="utf-8"))
@click.option("--json", "as_json", is_flag=True, help="Print the raw response as JSON")
def send(request_file, as_json: bool):
    """Send a chat request read from REQUEST_FILE (- reads stdin).

    The file holds one JSON request: model, messages (string content or a
    list of text / image_url / file_url items), and optional platform,
    max_tokens, temperature, top_p, stop and response_format. camelCase keys
    (maxTokens, topP) are accepted too.

    Examples:

        chat-gateway send request.json

        cat request.json | chat-gateway send - --json
    """
    from .providers.base import ChatRequest

    try:
        request = ChatRequest.from_dict(json.load(request_file))
    except json.JSONDecodeError as e:
        console.print(f"[red]Error: request is not valid JSON: {e}[/red]")
        sys.exit(1)
    except GatewayError as e:
        _print_error(e)
        sys.exit(1)

    gateway = _build_gateway()
    response = _ask(request.model, lambda: gateway.chat(request))
    _print_response(response, as_json)


@cli.command()
def models():
    """List registered models and their capabilities."""
    gateway = _build_gateway()

    table = Table(title="Registered models")
    table.add_column("Model", style="cyan")
    table.add_column("Provider")
    table.add_column("Capabilities")

    for model, capabilities in gateway.model_capabilities().items():
        provider = gateway.registry.lookup(model).provider_name
        table.add_row(model, provider, ", ".join(sorted(c.value for c in capabilities)))

    console.print(table)


def _ask(model: str, call):
    """Run a gateway call behind a spinner; print the error and exit on failure."""
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Asking {model}...", total=None)
            return call()

    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        sys.exit(130)
    except GatewayError as e:
        _print_error(e)
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            console.print_exception()
        sys.exit(1)


def _print_error(error: GatewayError):
    console.print(f"\n[red]Error [{error.code}]: {error.message}[/red]")
    if error.details:
        console.print(f"[dim]{error.details}[/dim]")


def _print_response(response, as_json: bool):
    if as_json:
        console.print_json(json.dumps(response.to_dict(), ensure_ascii=False))
        return
    _display_response(response, console)


def _display_response(response, console: Console):
    """Display a chat response."""
    reasoning = response.messages[0].extensions.get("reasoning_content") if response.messages else None
    if reasoning:
        console.print(Panel(reasoning, title="Reasoning", border_style="dim"))

    console.print(Panel(response.text, title=f"{response.model}", border_style="green"))

    # Show usage stats if available
    usage = response.usage
    if usage:
        console.print(f"[dim]Tokens: {usage.total_tokens or 0:,} "
                     f"(prompt: {usage.prompt_tokens or 0:,}, "
                     f"completion: {usage.completion_tokens or 0:,})[/dim]")


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
