"""``switchboard history`` - browse and manage saved conversations."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click

from switchboard.config.models import SwitchboardConfig
from switchboard.constants import CONVERSATIONS_DIR
from switchboard.history.models import ConversationIndexEntry, ReplayMessage
from switchboard.history.replay import build_replay
from switchboard.history.store import ConversationStore


def _open_store(obj: dict[str, Any]) -> ConversationStore:
    config: SwitchboardConfig = obj["config"]
    return ConversationStore(
        Path(config.storage.data_dir) / CONVERSATIONS_DIR,
        max_history=config.storage.max_history,
    )


@click.group()
def history() -> None:
    """Browse saved conversations."""


@history.command("list")
@click.pass_obj
def list_conversations(obj: dict[str, Any]) -> None:
    """List saved conversations, newest first."""
    entries = _open_store(obj).list_index()
    if not entries:
        click.echo("No saved conversations.")
        return
    _format_list(entries)


@history.command("show")
@click.argument("handle")
@click.pass_obj
def show(obj: dict[str, Any], handle: str) -> None:
    """Replay the saved conversation HANDLE."""
    conversation = _open_store(obj).load(handle)
    if conversation is None:
        click.echo(f"Conversation not found: {handle}", err=True)
        raise SystemExit(1)

    click.echo(f"Session: {conversation.session_id}")
    click.echo(f"Started: {conversation.start_time or '-'}  Ended: {conversation.end_time}")
    click.echo(
        f"Cost: ${conversation.total_cost:.4f}  Tokens: "
        f"{conversation.total_tokens.input} in / {conversation.total_tokens.output} out"
    )
    click.echo("")
    for message in build_replay(conversation.messages):
        click.echo(_format_message(message))


@history.command("delete")
@click.argument("handle")
@click.pass_obj
def delete(obj: dict[str, Any], handle: str) -> None:
    """Delete the saved conversation HANDLE."""
    if not _open_store(obj).delete(handle):
        click.echo(f"Conversation not found: {handle}", err=True)
        raise SystemExit(1)
    click.echo(f"Deleted {handle}")


# ------------------------------------------------------------------ #
# Formatting
# ------------------------------------------------------------------ #


def _format_list(entries: list[ConversationIndexEntry]) -> None:
    header = f"{'FILE':<44} {'MESSAGES':>8} {'COST':>9}  FIRST MESSAGE"
    click.echo(header)
    click.echo("-" * len(header))
    for entry in entries:
        preview = entry.first_user_message.replace("\n", " ")
        click.echo(
            f"{entry.filename:<44} {entry.message_count:>8} "
            f"{'$' + format(entry.total_cost, '.4f'):>9}  {preview}"
        )


def _format_message(message: ReplayMessage) -> str:
    match message.type:
        case "user":
            return f"> {message.content}"
        case "assistant":
            return message.content
        case "thinking":
            return f"(thinking) {message.content}"
        case "tool_use":
            status = f" [{message.status}]" if message.status else ""
            return f"[{message.tool_name}]{status} {message.content}".rstrip()
        case "tool_result":
            prefix = "[tool error]" if message.is_error else "[tool result]"
            return f"{prefix} {message.content}"
        case "error":
            return f"Error: {message.content}"
    return message.content
