"""``switchboard chat`` - talk to the agent from the terminal."""

from __future__ import annotations

import asyncio
import functools
import json
from typing import Any

import click

from switchboard.bridge import Bridge
from switchboard.config.models import SwitchboardConfig
from switchboard.errors import ExecutableNotFoundError, SpawnError
from switchboard.session.models import (
    BridgeEvent,
    PermissionRequestedEvent,
    RecordForwardedEvent,
)

_HELP_TEXT = """\
  /new    save this conversation and start a new one
  /stop   stop the agent process
  /yolo   approve all tool use from now on
  /quit   exit (also /exit or Ctrl-D)"""


@click.command()
@click.argument("prompt", required=False)
@click.option("--model", default=None, help="Model passed to the agent.")
@click.option("--plan", "plan_mode", is_flag=True, help="Start in plan mode.")
@click.option(
    "--yolo",
    "auto_approve",
    is_flag=True,
    help="Skip all permission prompts.",
)
@click.option("--resume", "resume_id", default=None, help="Resume an agent session id.")
@click.option(
    "--load",
    "load_handle",
    default=None,
    help="Continue a saved conversation (file name from `history list`).",
)
@click.pass_obj
def chat(
    obj: dict[str, Any],
    prompt: str | None,
    model: str | None,
    plan_mode: bool,
    auto_approve: bool,
    resume_id: str | None,
    load_handle: str | None,
) -> None:
    """Send PROMPT to the agent, or start an interactive session without one."""
    config: SwitchboardConfig = obj["config"]
    if plan_mode and auto_approve:
        raise click.UsageError("--plan and --yolo cannot be combined")

    overrides: dict[str, Any] = {}
    if model:
        overrides["model"] = model
    if plan_mode:
        overrides["plan_mode"] = True
        overrides["auto_approve"] = False
    if auto_approve:
        overrides["auto_approve"] = True
        overrides["plan_mode"] = False
    if overrides:
        agent = config.agent.model_copy(update=overrides)
        config = config.model_copy(update={"agent": agent})

    try:
        ok = asyncio.run(_run_chat(config, prompt, resume_id, load_handle))
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        raise SystemExit(130) from None
    if not ok:
        raise SystemExit(1)


# ------------------------------------------------------------------ #
# Session runner
# ------------------------------------------------------------------ #


async def _run_chat(
    config: SwitchboardConfig,
    prompt: str | None,
    resume_id: str | None,
    load_handle: str | None,
) -> bool:
    bridge = Bridge(config)
    try:
        if load_handle:
            conversation = bridge.load_conversation(load_handle)
            if conversation is None:
                click.echo(f"Conversation not found: {load_handle}", err=True)
                return False
            click.echo(f"Continuing session {conversation.session_id}")
        if resume_id:
            bridge.resume_session(resume_id)
        bridge.channel.drain()

        if prompt:
            return await run_turn(bridge, prompt)
        await _repl_loop(bridge)
        return True
    finally:
        await bridge.aclose()


async def _repl_loop(bridge: Bridge) -> None:
    """Read user input in a loop and send each line as one turn."""
    loop = asyncio.get_running_loop()
    click.echo("Type a message, or /help for commands.")
    while True:
        try:
            line = await loop.run_in_executor(None, _read_input)
        except EOFError:
            break

        line = line.strip()
        if not line:
            continue
        if line.startswith("/"):
            if await _handle_command(line, bridge):
                break
            continue
        await run_turn(bridge, line)


async def run_turn(bridge: Bridge, text: str) -> bool:
    """Send *text* and render events until the agent process ends.

    Returns:
        True if the agent completed the turn without an error.
    """
    if bridge.supervisor.is_running and not bridge.supervisor.input_open:
        await bridge.stop()
    bridge.channel.drain()
    try:
        sent = await bridge.send_message(text)
    except ExecutableNotFoundError as exc:
        bridge.channel.drain()
        click.echo(f"Agent CLI '{exc.executable}' not found.\n{exc.hint}", err=True)
        return False
    except SpawnError as exc:
        bridge.channel.drain()
        click.echo(f"Error: {exc}", err=True)
        return False
    if not sent:
        click.echo("Error: the agent did not accept the message.", err=True)
        await bridge.stop()
        return False

    completed = False
    while True:
        event = await bridge.channel.get()
        if event is None:
            return completed
        if isinstance(event, PermissionRequestedEvent):
            await _ask_permission(bridge, event)
            continue
        render_event(event)
        if event.type == "turn_completed":
            completed = not event.is_error
        elif event.type == "process_ended":
            return completed


async def _handle_command(line: str, bridge: Bridge) -> bool:
    """Process a slash command. Returns ``True`` if the REPL should exit."""
    cmd = line.split()[0].lower()

    if cmd in ("/quit", "/exit"):
        return True

    if cmd == "/new":
        await bridge.new_session()
        bridge.channel.drain()
        click.echo("Started a new conversation.")
        return False

    if cmd == "/stop":
        await bridge.stop()
        bridge.channel.drain()
        click.echo("Agent stopped.")
        return False

    if cmd == "/yolo":
        approved = bridge.enable_auto_approve()
        bridge.channel.drain()
        click.echo(f"Auto-approve enabled ({approved} pending request(s) approved).")
        return False

    if cmd == "/help":
        click.echo(_HELP_TEXT)
        return False

    click.echo(f"Unknown command: {cmd}")
    return False


# ------------------------------------------------------------------ #
# Permission prompts
# ------------------------------------------------------------------ #


async def _ask_permission(bridge: Bridge, event: PermissionRequestedEvent) -> None:
    click.echo(f"\nPermission requested: {event.tool_name}")
    click.echo(f"  {_summarize_input(event.tool_name, event.input)}")
    if event.decision_reason:
        click.echo(f"  reason: {event.decision_reason}")
    remember = f" (remember '{event.pattern}')" if event.pattern else ""
    loop = asyncio.get_running_loop()
    try:
        answer = await loop.run_in_executor(
            None,
            functools.partial(
                click.prompt,
                f"Allow? [y]es / [n]o / [a]lways{remember}",
                type=click.Choice(["y", "n", "a"], case_sensitive=False),
                default="n",
                show_choices=False,
            ),
        )
    except click.Abort:
        answer = "n"
    answer = answer.lower()
    bridge.decide_permission(event.request_id, answer in ("y", "a"), always_allow=answer == "a")


def _summarize_input(tool_name: str, tool_input: dict[str, Any]) -> str:
    for key in ("command", "file_path", "path", "pattern", "url"):
        value = tool_input.get(key)
        if isinstance(value, str):
            return value
    return json.dumps(tool_input)[:200] if tool_input else tool_name


# ------------------------------------------------------------------ #
# Rendering
# ------------------------------------------------------------------ #


def render_event(event: BridgeEvent) -> None:
    """Print one event as plain terminal lines."""
    match event.type:
        case "record_forwarded":
            _render_record(event)
        case "permission_resolved" if event.automatic:
            click.echo(f"[auto-approved {event.request_id}]", err=True)
        case "turn_completed":
            cost = f"${event.cost_usd:.4f}" if event.cost_usd is not None else "n/a"
            click.echo(f"-- turn complete, cost {cost}", err=True)
        case "process_error":
            click.echo(f"Error: {event.message}", err=True)
        case "session_started":
            click.echo(f"[session {event.session_id}]", err=True)


def _render_record(event: RecordForwardedEvent) -> None:
    message = event.payload.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        return
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if event.kind == "assistant" and block_type == "text":
            text = str(block.get("text", "")).strip()
            if text:
                click.echo(text)
        elif event.kind == "assistant" and block_type == "tool_use":
            tool_input = block.get("input")
            name = str(block.get("name", "tool"))
            summary = _summarize_input(name, tool_input if isinstance(tool_input, dict) else {})
            click.echo(f"[{name}] {summary}")
        elif event.kind == "user" and block_type == "tool_result" and block.get("is_error"):
            click.echo(f"[tool error] {block.get('content')}", err=True)


def _read_input() -> str:
    r"""Blocking stdin reader for use with ``run_in_executor``.

    Lines ending with ``\`` continue on the next line.
    """
    lines: list[str] = []
    prompt = "> "
    while True:
        line = input(prompt)
        if line.endswith("\\"):
            lines.append(line[:-1])
            prompt = "... "
        else:
            lines.append(line)
            return "\n".join(lines)
