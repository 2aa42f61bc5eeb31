"""CLI interface for aistream using Click."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import click
import httpx
from dotenv import load_dotenv

from aistream.core.client import APIClient
from aistream.core.config import get_project_root, load_settings
from aistream.core.errors import APIError
from aistream.llm.chat import ChatRequest
from aistream.llm.types import ChatChunk, ChatResponse, Message, Role, StreamEnd
from aistream.streaming.accumulator import ChatAccumulator
from aistream.streaming.cancellation import CancellationToken
from aistream.streaming.driver import EventStream, StreamDriver, deliver


def _load_env():
    """Load .env file if it exists."""
    load_dotenv(get_project_root() / ".env")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s:%(name)s:%(levelname)s:%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _echo_chunk(chunk: ChatChunk) -> None:
    if chunk.content:
        click.echo(chunk.content, nl=False)


def _report_end(response: ChatResponse) -> None:
    if response.end is StreamEnd.CANCELLED:
        click.echo("[stream cancelled; response is partial]", err=True)
    elif response.end is StreamEnd.EOF:
        click.echo("[connection closed before the stream finished; response may be partial]", err=True)


@click.group()
@click.version_option(version="0.1.0", prog_name="aistream")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """aistream - streaming client for generative AI APIs"""
    _configure_logging(verbose)


@cli.command()
@click.argument("prompt")
@click.option("--model", "-m", default="gpt-4o-mini", help="Model to use")
@click.option("--system", "-s", default=None, help="Optional system prompt")
@click.option("--timeout", "-t", type=float, default=None, help="Stop streaming after N seconds")
def chat(prompt: str, model: str, system: str | None, timeout: float | None):
    """Stream a single chat completion to stdout."""
    asyncio.run(_chat(prompt, model, system, timeout))


async def _chat(prompt: str, model: str, system: str | None, timeout: float | None):
    _load_env()
    settings = load_settings()
    if not settings.resolved_api_key():
        click.echo("Error: OPENAI_API_KEY not set. Add it to .env or environment.", err=True)
        sys.exit(1)

    messages = []
    if system:
        messages.append(Message(role=Role.SYSTEM, content=system))
    messages.append(Message(role=Role.USER, content=prompt))
    request = ChatRequest(model=model, messages=messages)

    token = None
    if timeout:
        token = CancellationToken()
        token.cancel_after(timeout)

    async with APIClient(settings) as client:
        try:
            response = await client.chat.stream_completion(request, _echo_chunk, cancel=token)
        except APIError as e:
            click.echo(f"\nError: {e.to_display_string()}", err=True)
            sys.exit(1)

    click.echo()
    _report_end(response)
    if response.usage:
        click.echo(response.usage_summary(), err=True)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, help="Print the merged response as JSON")
def replay(file_path: str, as_json: bool):
    """Decode a captured event-stream transcript and print the merged response."""
    try:
        response = asyncio.run(_replay(Path(file_path)))
    except APIError as e:
        click.echo(f"Error: {e.to_display_string()}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(dataclasses.asdict(response), indent=2, default=str))
        return

    for choice in response.choices:
        if len(response.choices) > 1:
            click.echo(f"--- choice {choice.index} ---")
        click.echo(choice.to_display_string())
        for tc in choice.message.tool_calls or []:
            click.echo(f"tool call [{tc.index}] {tc.id}: {tc.to_display_string()}")
        if choice.finish_reason:
            click.echo(f"(finish reason: {choice.finish_reason})")
    _report_end(response)


async def _replay(path: Path) -> ChatResponse:
    body = path.read_bytes()

    @asynccontextmanager
    async def _open():
        response = httpx.Response(
            200, content=body, headers={"content-type": "text/event-stream"}
        )
        try:
            yield response
        finally:
            await response.aclose()

    driver = StreamDriver(
        _open,
        ChatChunk.from_payload,
        ChatAccumulator(),
        max_consecutive_decode_errors=None,
        label="replay",
    )
    return await deliver(EventStream(driver), None)


@cli.command("cancel-run")
@click.argument("thread_id")
@click.argument("run_id")
def cancel_run(thread_id: str, run_id: str):
    """Cancel a running assistant run."""
    asyncio.run(_cancel_run(thread_id, run_id))


async def _cancel_run(thread_id: str, run_id: str):
    _load_env()
    settings = load_settings()
    async with APIClient(settings) as client:
        try:
            run = await client.runs.cancel(thread_id, run_id)
        except APIError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Run {run_id}: {run.get('status', 'unknown')}")
