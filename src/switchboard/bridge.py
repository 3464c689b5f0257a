"""Bridge facade: the inbound command surface in front of the agent process."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from switchboard.agent.dispatcher import ProtocolDispatcher
from switchboard.agent.permissions import PermissionNegotiator, PermissionRuleStore
from switchboard.agent.supervisor import ProcessSupervisor, SendOptions
from switchboard.agent.telemetry import TelemetryAccumulator
from switchboard.config.models import SwitchboardConfig
from switchboard.constants import CONVERSATIONS_DIR, PERMISSIONS_FILE, TELEMETRY_FILE
from switchboard.errors import ExecutableNotFoundError, SpawnError
from switchboard.history.models import (
    Conversation,
    ConversationIndexEntry,
    TokenTotals,
    TranscriptEntry,
)
from switchboard.history.replay import build_replay
from switchboard.history.store import ConversationStore
from switchboard.history.transcript import TranscriptBuilder
from switchboard.protocol.records import Record, RecordKind
from switchboard.session.channel import EventChannel
from switchboard.session.models import (
    ConversationListEvent,
    ConversationLoadedEvent,
    CostUpdatedEvent,
    ProcessEndedEvent,
    ProcessErrorEvent,
    SessionStartedEvent,
    UsageUpdatedEvent,
)

logger = logging.getLogger(__name__)

#: Shown when the agent cannot resume a stored session.
SESSION_EXPIRED_MESSAGE = (
    "Session expired. Send your message again to start a new conversation."
)


class Bridge:
    """Accepts user commands, drives the agent, and emits events.

    One bridge owns one supervisor, so at most one agent process runs at
    a time.  Everything the agent produces reaches the front end through
    ``channel`` and is recorded in the conversation store.
    """

    def __init__(
        self,
        config: SwitchboardConfig,
        channel: EventChannel | None = None,
    ) -> None:
        data_dir = Path(config.storage.data_dir)
        self._config = config
        self.channel = channel or EventChannel()
        self.telemetry = TelemetryAccumulator.load(data_dir / TELEMETRY_FILE)
        self.store = ConversationStore(
            data_dir / CONVERSATIONS_DIR,
            max_history=config.storage.max_history,
        )
        self.rules = PermissionRuleStore(data_dir / PERMISSIONS_FILE)
        self.supervisor = ProcessSupervisor(config, listener=self)
        self.negotiator = PermissionNegotiator(
            self.supervisor.write_message,
            self.channel,
            self.rules,
            trust_all=config.agent.auto_approve,
        )
        self.dispatcher = ProtocolDispatcher(
            self.negotiator,
            self.telemetry,
            self.channel,
            close_input=self.supervisor.close_input,
            on_session_id=self._on_session_id,
            on_session_lost=self._on_session_lost,
        )
        self._transcript = TranscriptBuilder()
        self._auto_approve = config.agent.auto_approve

    @property
    def auto_approve(self) -> bool:
        return self._auto_approve

    @property
    def session_id(self) -> str | None:
        return self.supervisor.session_id

    def default_options(self) -> SendOptions:
        options = SendOptions.from_config(self._config.agent)
        if self._auto_approve:
            options = dataclasses.replace(options, auto_approve=True)
        return options

    # ------------------------------------------------------------------ #
    # Inbound commands
    # ------------------------------------------------------------------ #

    async def send_message(self, text: str, options: SendOptions | None = None) -> bool:
        """Send one user turn, starting an agent process when needed.

        Returns:
            True if the turn reached the agent's stdin.

        Raises:
            SpawnError: If the agent could not be started.  A
                ``ProcessErrorEvent`` has already been emitted.
        """
        if options is None:
            options = self.default_options()
        elif self._auto_approve:
            options = dataclasses.replace(options, auto_approve=True)

        if self.supervisor.is_running and not self.supervisor.input_open:
            # Previous turn finished writing; its process is still winding down.
            await self.supervisor.stop()

        self._append("userInput", text)
        self._append("loading", "Agent is working...")
        self._append("setProcessing", {"isProcessing": True})

        if not self.supervisor.is_running:
            try:
                started = await self.supervisor.start(options)
            except SpawnError as exc:
                self._append("error", str(exc))
                self._append("setProcessing", {"isProcessing": False})
                self.channel.publish(
                    ProcessErrorEvent(
                        message=str(exc),
                        missing_executable=isinstance(exc, ExecutableNotFoundError),
                    )
                )
                raise
            if not started:
                return False
            self.dispatcher.begin_process()

        return await self.supervisor.send(text)

    async def stop(self) -> None:
        """Stop the running agent process, if any."""
        await self.supervisor.stop()
        self._append("setProcessing", {"isProcessing": False})

    async def new_session(self) -> None:
        """Save and forget the current conversation and start over."""
        await self.supervisor.stop()
        self.save_conversation()
        self.supervisor.set_session_id(None)
        self.telemetry.reset_session()
        self.store.clear()
        self._transcript.reset()
        self._publish_telemetry()

    def resume_session(self, session_id: str) -> None:
        """Continue an existing agent session on the next turn."""
        self.supervisor.set_session_id(session_id)
        self.channel.publish(SessionStartedEvent(session_id=session_id))

    def decide_permission(
        self, request_id: str, approved: bool, always_allow: bool = False
    ) -> bool:
        return self.negotiator.decide(request_id, approved, always_allow)

    def enable_auto_approve(self) -> int:
        """Trust the agent from now on and approve everything pending.

        Returns:
            The number of pending requests approved.
        """
        self._auto_approve = True
        return self.negotiator.auto_approve_all()

    def load_conversation(self, handle: str) -> Conversation | None:
        """Make a saved conversation current and emit its replay."""
        conversation = self.store.load(handle)
        if conversation is None:
            self.channel.publish(ConversationLoadedEvent(handle=handle, found=False))
            return None

        self.supervisor.set_session_id(conversation.session_id)
        self.telemetry.restore_session(conversation.total_cost)
        self._transcript.reset()
        self.channel.publish(
            ConversationLoadedEvent(
                handle=handle,
                found=True,
                session_id=conversation.session_id,
                messages=build_replay(conversation.messages),
            )
        )
        return conversation

    def list_conversations(self) -> list[ConversationIndexEntry]:
        entries = self.store.list_index()
        self.channel.publish(ConversationListEvent(entries=entries))
        return entries

    def delete_conversation(self, handle: str) -> bool:
        deleted = self.store.delete(handle)
        if deleted:
            self.list_conversations()
        return deleted

    def save_conversation(self) -> ConversationIndexEntry | None:
        cumulative = self.telemetry.usage.cumulative
        entry = self.store.save(
            self.supervisor.session_id,
            total_cost=self.telemetry.cost.session_usd,
            total_tokens=TokenTotals(input=cumulative.input, output=cumulative.output),
        )
        self.telemetry.save()
        return entry

    async def aclose(self) -> None:
        """Stop the agent, save the conversation and close the channel."""
        await self.supervisor.stop()
        self.save_conversation()
        self.channel.close()

    # ------------------------------------------------------------------ #
    # SupervisorListener
    # ------------------------------------------------------------------ #

    def on_record(self, record: Record) -> None:
        self.dispatcher.dispatch(record)
        for entry in self._transcript.entries_for(record, self.telemetry.usage):
            self.store.append(entry)
        if record.kind is RecordKind.RESULT:
            self._append("setProcessing", {"isProcessing": False})
            self.save_conversation()

    def on_ended(self, exit_code: int | None) -> None:
        cancelled = self.negotiator.cancel_all()
        if cancelled:
            logger.info("Cancelled %d pending permission request(s)", cancelled)
        self.channel.publish(ProcessEndedEvent(exit_code=exit_code))

    def on_error(self, message: str) -> None:
        self._append("error", message)
        self.channel.publish(ProcessErrorEvent(message=message))

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _on_session_id(self, session_id: str) -> None:
        if session_id == self.supervisor.session_id:
            return
        self.supervisor.set_session_id(session_id)
        self.channel.publish(SessionStartedEvent(session_id=session_id))

    def _on_session_lost(self) -> None:
        self.supervisor.set_session_id(None)
        self.channel.publish(ProcessErrorEvent(message=SESSION_EXPIRED_MESSAGE))

    def _append(self, kind: str, data: object) -> None:
        self.store.append(TranscriptEntry(type=kind, data=data))

    def _publish_telemetry(self) -> None:
        cost = self.telemetry.cost
        self.channel.publish(UsageUpdatedEvent(snapshot=self.telemetry.usage))
        self.channel.publish(
            CostUpdatedEvent(session_usd=cost.session_usd, all_time_usd=cost.all_time_usd)
        )
