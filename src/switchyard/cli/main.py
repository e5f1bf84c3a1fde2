"""Click CLI group: providers, health and ask commands."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict

import click

from switchyard.config import get_settings, load_manager_config
from switchyard.errors import ConfigError, NoProviderAvailableError
from switchyard.failover.classifier import describe_reason, to_failover_error
from switchyard.failover.retry import RetryAttempt, RetryOptions, with_retry
from switchyard.logging import bind_context, clear_context, configure_logging
from switchyard.providers.base import ACTIONS, ChatOptions, ChatResponse, Message, ModelProvider
from switchyard.providers.manager import ProviderManager
from switchyard.toolcalls import parse_tool_calls_from_text


def _build_manager(ctx: click.Context) -> ProviderManager:
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        config = load_manager_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    manager = ProviderManager(config)
    manager.initialize()
    return manager


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=str),
    default=None,
    help="Provider configuration file (default: SWITCHYARD_CONFIG).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Switchyard model provider CLI."""
    settings = get_settings()
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Print providers as JSON.")
@click.pass_context
def providers(ctx: click.Context, json_output: bool) -> None:
    """List the providers that initialized successfully."""
    manager = _build_manager(ctx)
    rows = []
    for provider_id in manager.provider_ids():
        provider = manager.get_provider_by_id(provider_id)
        if provider is None:
            continue
        rows.append(
            {
                "id": provider.id,
                "name": provider.name,
                "type": provider.type.value,
                "model": provider.model,
            }
        )
    if json_output:
        click.echo(json.dumps(rows))
        return
    if not rows:
        click.echo("no providers registered")
        return
    for row in rows:
        click.echo(f"{row['id']}\t{row['type']}\t{row['model']}")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Print the report as JSON.")
@click.pass_context
def health(ctx: click.Context, json_output: bool) -> None:
    """Probe every registered provider and print the result."""
    manager = _build_manager(ctx)
    report = asyncio.run(manager.health_report(force=True))
    if json_output:
        click.echo(json.dumps(report))
    else:
        for provider_id, ok in report.items():
            click.echo(f"{provider_id}\t{'ok' if ok else 'down'}")
    if report and not any(report.values()):
        ctx.exit(1)


def _format_response(provider: ModelProvider, response: ChatResponse, parse_tools: bool) -> dict:
    payload: dict[str, object] = {
        "ok": True,
        "provider_id": provider.id,
        "model": provider.model,
        "content": response.content,
        "finish_reason": response.finish_reason,
        "tool_calls": [asdict(call) for call in response.tool_calls or []],
        "usage": asdict(response.usage) if response.usage else None,
    }
    if parse_tools and not response.tool_calls:
        parsed = parse_tool_calls_from_text(response.content)
        if parsed.ok:
            payload["content"] = parsed.cleaned_content
            payload["tool_calls"] = [asdict(call) for call in parsed.tool_calls]
            payload["finish_reason"] = "tool_calls"
        else:
            payload["tool_call_parse"] = {
                "error": parsed.error,
                "had_markup": parsed.had_markup,
                "truncated": parsed.truncated,
            }
    return payload


def _echo_failure(*, reason: str, provider_id: str | None, status: int | None, error: str) -> None:
    click.echo(
        json.dumps(
            {
                "ok": False,
                "reason": reason,
                "provider_id": provider_id,
                "status": status,
                "error": error,
            }
        )
    )


@cli.command()
@click.argument("message")
@click.option("--action", type=click.Choice(ACTIONS), default="chat", show_default=True)
@click.option("--system", "system_prompt", type=str, default=None, help="System prompt.")
@click.option("--best", is_flag=True, help="Use the first healthy provider instead of routing.")
@click.option("--retries", type=click.IntRange(min=0), default=3, show_default=True)
@click.option("--thinking", type=str, default=None, help="Thinking level hint (off, low, ...).")
@click.option("--parse-tools", is_flag=True, help="Extract tool calls from plain-text answers.")
@click.option("--json", "json_output", is_flag=True, help="Print structured JSON response.")
@click.pass_context
def ask(
    ctx: click.Context,
    message: str,
    action: str,
    system_prompt: str | None,
    best: bool,
    retries: int,
    thinking: str | None,
    parse_tools: bool,
    json_output: bool,
) -> None:
    """Send one message to a provider and print the reply."""
    manager = _build_manager(ctx)
    messages: list[Message] = []
    if system_prompt:
        messages.append(Message(role="system", content=system_prompt))
    messages.append(Message(role="user", content=message))
    options = ChatOptions(thinking_level=thinking)

    def _report_retry(event: RetryAttempt) -> None:
        reason = event.reason.value if event.reason else "unknown"
        click.echo(
            f"retry {event.attempt}/{retries} in {event.delay_ms} ms ({reason}): {event.error}",
            err=True,
        )

    async def _run() -> tuple[ModelProvider, ChatResponse]:
        provider = await manager.select_best_provider() if best else manager.get_provider(action)
        bind_context(provider_id=provider.id, action=action)
        response = await with_retry(
            lambda: provider.chat(messages, options),
            RetryOptions(max_retries=retries),
            on_retry=_report_retry,
        )
        return provider, response

    try:
        provider, response = asyncio.run(_run())
    except NoProviderAvailableError as exc:
        if json_output:
            _echo_failure(reason="no_provider", provider_id=None, status=None, error=str(exc))
            ctx.exit(1)
        raise click.ClickException(str(exc)) from exc
    except Exception as exc:
        failure = to_failover_error(exc)
        if json_output:
            _echo_failure(
                reason=failure.reason.value,
                provider_id=failure.provider_id,
                status=failure.status,
                error=str(failure),
            )
            ctx.exit(1)
        raise click.ClickException(
            f"[{failure.reason.value}] {failure}\nhint: {describe_reason(failure.reason)}"
        ) from exc
    finally:
        clear_context()

    payload = _format_response(provider, response, parse_tools)
    if json_output:
        click.echo(json.dumps(payload))
        return
    click.echo(str(payload["content"]))
    for call in payload["tool_calls"]:
        click.echo(f"tool_call: {call['name']} {json.dumps(call['arguments'])}")


def main() -> None:
    cli(obj={})
