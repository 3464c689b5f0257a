"""Process supervisor: owns the agent subprocess and its stdio streams."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from switchboard.agent.helpers import (
    build_agent_env,
    format_stderr_preview,
    to_launcher_path,
)
from switchboard.config.models import AgentConfig, SwitchboardConfig
from switchboard.constants import MAX_LINE_BYTES, READ_CHUNK_BYTES
from switchboard.errors import ExecutableNotFoundError, ProtocolError, SpawnError
from switchboard.protocol.framer import LineFramer
from switchboard.protocol.records import Record, encode, user_message

logger = logging.getLogger(__name__)


@runtime_checkable
class SupervisorListener(Protocol):
    """Receives everything the supervised process produces."""

    def on_record(self, record: Record) -> None: ...

    def on_ended(self, exit_code: int | None) -> None: ...

    def on_error(self, message: str) -> None: ...


class TerminationPhase(Enum):
    """Escalation steps of ``ProcessSupervisor.stop()``, in order."""

    CLOSE_INPUT = "close_input"
    SIGNAL_GROUP = "signal_group"
    KILL = "kill"


#: Phases run by ``stop()`` until the process has exited.
TERMINATION_SEQUENCE = (
    TerminationPhase.CLOSE_INPUT,
    TerminationPhase.SIGNAL_GROUP,
    TerminationPhase.KILL,
)


@dataclass
class SendOptions:
    """Per-turn options that shape the agent's command line."""

    cwd: str | None = None
    model: str | None = None
    plan_mode: bool = False
    auto_approve: bool = False
    mcp_config: str | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    append_system_prompt: str | None = None

    @classmethod
    def from_config(cls, agent: AgentConfig) -> SendOptions:
        return cls(
            cwd=agent.cwd,
            model=agent.model,
            plan_mode=agent.plan_mode,
            auto_approve=agent.auto_approve,
            mcp_config=agent.mcp_config,
            allowed_tools=list(agent.allowed_tools),
            disallowed_tools=list(agent.disallowed_tools),
            append_system_prompt=agent.append_system_prompt,
        )


class ProcessSupervisor:
    """Spawns one agent process at a time and reports what it produces.

    Output is framed into records and handed to *listener* in arrival
    order.  Every reader checks that its process is still the active one,
    so output from a process that was stopped or replaced is dropped.
    ``listener.on_ended`` fires exactly once per process.
    """

    def __init__(self, config: SwitchboardConfig, listener: SupervisorListener) -> None:
        self._agent = config.agent
        self._launcher = config.launcher
        self._stop_grace = config.process.stop_grace_seconds
        self._kill_grace = config.process.kill_grace_seconds
        self._listener = listener

        self._process: asyncio.subprocess.Process | None = None
        self._input_closed = True
        self._session_id: str | None = None
        self._write_lock = asyncio.Lock()
        self._spawn_task: asyncio.Future[asyncio.subprocess.Process] | None = None
        self._tasks: list[asyncio.Task[Any]] = []
        self._stderr: dict[int, str] = {}

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def set_session_id(self, session_id: str | None) -> None:
        self._session_id = session_id or None

    @property
    def is_running(self) -> bool:
        return self._process is not None

    @property
    def input_open(self) -> bool:
        return self._process is not None and not self._input_closed

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    # ------------------------------------------------------------------ #
    # Command line
    # ------------------------------------------------------------------ #

    def build_args(self, options: SendOptions) -> list[str]:
        """Return the agent arguments for one turn."""
        args = [
            "--output-format",
            "stream-json",
            "--input-format",
            "stream-json",
            "--verbose",
        ]
        if options.auto_approve:
            args.append("--dangerously-skip-permissions")
        else:
            args.extend(["--permission-prompt-tool", "stdio"])
            if options.plan_mode:
                args.extend(["--permission-mode", "plan"])

        if options.mcp_config:
            mcp_path = options.mcp_config
            if self._launcher.enabled:
                mcp_path = to_launcher_path(mcp_path)
            args.extend(["--mcp-config", mcp_path])
        if options.model:
            args.extend(["--model", options.model])
        if options.append_system_prompt:
            args.extend(["--append-system-prompt", options.append_system_prompt])
        if options.allowed_tools:
            args.extend(["--allowedTools", ",".join(options.allowed_tools)])
        if options.disallowed_tools:
            args.extend(["--disallowedTools", ",".join(options.disallowed_tools)])
        if self._session_id:
            args.extend(["--resume", self._session_id])
        return args

    def build_command(self, options: SendOptions) -> list[str]:
        """Return the full argv, direct or through the configured launcher."""
        args = self.build_args(options)
        launcher = self._launcher
        if not launcher.enabled:
            return [self._agent.executable, *args]

        inner: list[str] = []
        if launcher.node_path:
            inner.extend(
                [shlex.quote(launcher.node_path), "--no-warnings", "--enable-source-maps"]
            )
        inner.append(shlex.quote(launcher.cli_path or self._agent.executable))
        inner.extend(shlex.quote(arg) for arg in args)
        return [launcher.program, "-d", launcher.distro, launcher.shell, "-ic", " ".join(inner)]

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, options: SendOptions) -> bool:
        """Spawn the agent process and begin reading its output.

        Returns:
            True once the process is running, False if ``stop()``
            cancelled the spawn.

        Raises:
            ExecutableNotFoundError: If the executable does not exist.
            SpawnError: If a process is already active or spawning fails.
        """
        if self._process is not None:
            msg = "An agent process is already running"
            raise SpawnError(msg)

        argv = self.build_command(options)
        env = build_agent_env(self._agent.env, self._agent.strip_env)
        logger.info("Spawning agent: %s", shlex.join(argv))

        self._spawn_task = asyncio.ensure_future(
            asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=MAX_LINE_BYTES,
                cwd=options.cwd,
                env=env,
                start_new_session=True,
            )
        )
        try:
            proc = await self._spawn_task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("Agent spawn cancelled")
            return False
        except FileNotFoundError as exc:
            logger.error("Agent executable not found: %s", argv[0])
            raise ExecutableNotFoundError(argv[0]) from exc
        except OSError as exc:
            logger.error("Failed to spawn agent: %s", exc)
            msg = f"Failed to spawn agent: {exc}"
            raise SpawnError(msg) from exc
        finally:
            self._spawn_task = None

        self._process = proc
        self._input_closed = False
        self._stderr[id(proc)] = ""
        stdout_task = asyncio.create_task(self._read_stdout(proc))
        stderr_task = asyncio.create_task(self._read_stderr(proc))
        self._tasks = [
            stdout_task,
            stderr_task,
            asyncio.create_task(self._watch(proc, stdout_task, stderr_task)),
        ]
        logger.info("Agent process started (pid %s)", proc.pid)
        return True

    async def stop(self) -> None:
        """Terminate the active process, escalating until it exits.

        Safe to call repeatedly; with nothing running it does nothing.
        """
        if self._spawn_task is not None and not self._spawn_task.done():
            self._spawn_task.cancel()

        proc = self._process
        if proc is None:
            return
        self._process = None
        self._input_closed = True

        if proc.returncode is None:
            for phase in TERMINATION_SEQUENCE:
                if await self.run_phase(phase, proc):
                    break

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._stderr.pop(id(proc), None)
        logger.info("Agent process stopped")
        self._listener.on_ended(proc.returncode)

    async def run_phase(
        self, phase: TerminationPhase, proc: asyncio.subprocess.Process
    ) -> bool:
        """Run one termination phase; returns True once the process has exited."""
        try:
            match phase:
                case TerminationPhase.CLOSE_INPUT:
                    self._close_stdin(proc)
                    return await self._wait_exit(proc, self._stop_grace)
                case TerminationPhase.SIGNAL_GROUP:
                    self._signal_group(proc)
                    return await self._wait_exit(proc, self._kill_grace)
                case TerminationPhase.KILL:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    return await self._wait_exit(proc, self._kill_grace)
        except OSError as exc:
            logger.warning("Termination phase %s failed: %s", phase.value, exc)
        return False

    # ------------------------------------------------------------------ #
    # Writing
    # ------------------------------------------------------------------ #

    async def send(self, text: str) -> bool:
        """Write one user turn to the agent's stdin."""
        async with self._write_lock:
            if not self.write_message(user_message(text, self._session_id)):
                return False
            proc = self._process
            if proc is None or proc.stdin is None:
                return False
            try:
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError, OSError) as exc:
                logger.warning("Agent stdin closed while sending: %s", exc)
                return False
        return True

    def write_message(self, payload: dict[str, Any]) -> bool:
        """Write one JSON line to stdin; False when there is no open input."""
        proc = self._process
        if proc is None or proc.stdin is None or self._input_closed:
            logger.warning("No agent input open; dropping %s message", payload.get("type"))
            return False
        try:
            proc.stdin.write(encode(payload))
        except (BrokenPipeError, ConnectionResetError, OSError) as exc:
            logger.warning("Failed to write to agent stdin: %s", exc)
            return False
        return True

    def close_input(self) -> None:
        """Close stdin so the agent exits after the current turn."""
        proc = self._process
        if proc is None or self._input_closed:
            return
        self._input_closed = True
        self._close_stdin(proc)

    # ------------------------------------------------------------------ #
    # Readers
    # ------------------------------------------------------------------ #

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdout is None:
            return
        framer = LineFramer()
        while True:
            chunk = await proc.stdout.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            for obj in framer.feed(chunk):
                if self._process is not proc:
                    return
                self._deliver(obj)
        for obj in framer.flush():
            if self._process is not proc:
                return
            self._deliver(obj)

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stderr is None:
            return
        data = await proc.stderr.read()
        if data and id(proc) in self._stderr:
            self._stderr[id(proc)] = data.decode(errors="replace")

    async def _watch(
        self,
        proc: asyncio.subprocess.Process,
        stdout_task: asyncio.Task[None],
        stderr_task: asyncio.Task[None],
    ) -> None:
        results = await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(
                result, asyncio.CancelledError
            ):
                logger.error("Agent stream reader failed: %s", result)
        returncode = await proc.wait()

        if self._process is not proc:
            return
        self._process = None
        self._input_closed = True
        self._tasks = []
        stderr_text = self._stderr.pop(id(proc), "").strip()

        logger.info("Agent process exited with code %s", returncode)
        if returncode != 0 and stderr_text:
            logger.error(
                "Agent exited with code %s:\n  %s",
                returncode,
                format_stderr_preview(stderr_text),
            )
            self._listener.on_error(stderr_text)
        self._listener.on_ended(returncode)

    def _deliver(self, obj: dict[str, Any]) -> None:
        try:
            record = Record.from_json(obj)
        except ProtocolError as exc:
            logger.info("Ignoring record: %s", exc)
            return
        try:
            self._listener.on_record(record)
        except Exception:
            logger.exception("Listener failed on %s record", record.kind.value)

    # ------------------------------------------------------------------ #
    # Termination helpers
    # ------------------------------------------------------------------ #

    def _close_stdin(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.close()
        except (BrokenPipeError, ConnectionResetError, OSError) as exc:
            logger.debug("Closing agent stdin failed: %s", exc)

    def _signal_group(self, proc: asyncio.subprocess.Process) -> None:
        if not hasattr(os, "killpg"):
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            return
        # The child leads its own session, so its pid is the group id.
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGTERM)

    async def _wait_exit(self, proc: asyncio.subprocess.Process, timeout: float) -> bool:
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True
