"""Command-line agent runtime.

Runs a CLI coding agent (``claude -p`` by default) as an asyncio subprocess per
spawn. A background supervisor task streams stdout into the handle, enforces
the per-agent timeout, and publishes lifecycle events on the runtime's
``AgentEventBus`` once the process exits.

Key classes:
    - CommandAgentRuntime: AgentRuntime implementation backed by subprocesses
    - build_runtime(): construct a runtime from application config
"""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime
from uuid import uuid4

from taskweave.agents.types import AgentHandle, AgentSpawnOptions, AgentStatus
from taskweave.core.config import AgentSettings, AppConfig
from taskweave.core.console import get_logger
from taskweave.core.events import AgentEvent, AgentEventBus, AgentEventData
from taskweave.core.result import AgentError

logger = get_logger(__name__)

# Lines longer than asyncio's 64 KiB default are common in agent JSON output.
_STREAM_LIMIT = 1024 * 1024
_STDERR_TAIL = 500


class CommandAgentRuntime:
    """Spawn agents as subprocesses and track their lifecycle."""

    def __init__(self, settings: AgentSettings, *, events: AgentEventBus | None = None) -> None:
        self._settings = settings
        self.events = events or AgentEventBus()
        self._agents: dict[str, AgentHandle] = {}
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._supervisors: dict[str, asyncio.Task[None]] = {}
        self._stopped: set[str] = set()

    def build_command(self, options: AgentSpawnOptions) -> list[str]:
        """Build the argv for one agent invocation; the prompt is always last."""
        argv = list(self._settings.command)
        if options.model_override and self._settings.model_flag:
            argv.extend([self._settings.model_flag, options.model_override])
        if options.max_turns is not None and self._settings.max_turns_flag:
            argv.extend([self._settings.max_turns_flag, str(options.max_turns)])
        if options.dangerously_skip_permissions and self._settings.skip_permissions_flag:
            argv.append(self._settings.skip_permissions_flag)
        argv.append(options.prompt)
        return argv

    async def spawn(self, options: AgentSpawnOptions) -> AgentHandle:
        """Start an agent process.

        Raises:
            AgentError: If the agent command cannot be started.
        """
        argv = self.build_command(options)
        env = {**os.environ, **self._settings.env, **options.env}
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=options.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as exc:
            raise AgentError(
                "Agent command not found", context={"cmd": argv[0], "error": str(exc)}
            ) from exc
        except OSError as exc:
            raise AgentError(
                "Failed to start agent", context={"cmd": argv[0], "error": str(exc)}
            ) from exc

        handle = AgentHandle(
            id=f"agent-{uuid4().hex[:12]}",
            agent_type=options.agent_type,
            session_id=options.session_id,
            status=AgentStatus.RUNNING,
            model=options.model_override,
        )
        self._agents[handle.id] = handle
        self._processes[handle.id] = proc
        logger.info("Spawned %s agent %s (pid %s)", handle.agent_type, handle.id, proc.pid)

        self.events.emit(AgentEvent.SPAWNED, self._event(handle))
        self.events.emit(AgentEvent.STARTED, self._event(handle))
        self._supervisors[handle.id] = asyncio.create_task(
            self._supervise(handle, proc, options.timeout)
        )
        return handle

    def get(self, agent_id: str) -> AgentHandle | None:
        return self._agents.get(agent_id)

    def stop(self, agent_id: str) -> bool:
        """Terminate a running agent; the supervisor reports it as an error."""
        handle = self._agents.get(agent_id)
        proc = self._processes.get(agent_id)
        if handle is None or proc is None or handle.status.is_terminal:
            return False
        self._stopped.add(agent_id)
        try:
            proc.terminate()
        except ProcessLookupError:
            return False
        logger.info("Stop requested for agent %s", agent_id)
        self.events.emit(AgentEvent.STOPPED, self._event(handle))
        return True

    def session_agents(self, session_id: str) -> list[AgentHandle]:
        return [h for h in self._agents.values() if h.session_id == session_id]

    @property
    def running_count(self) -> int:
        return sum(1 for h in self._agents.values() if h.is_active)

    def cleanup_finished(self) -> int:
        """Forget terminal agents. Returns the number removed."""
        finished = [agent_id for agent_id, h in self._agents.items() if h.status.is_terminal]
        for agent_id in finished:
            self._agents.pop(agent_id, None)
            self._processes.pop(agent_id, None)
            self._supervisors.pop(agent_id, None)
            self._stopped.discard(agent_id)
        return len(finished)

    async def close(self) -> None:
        """Stop every active agent and wait for supervisors to settle.

        Terminal handles are forgotten afterwards.
        """
        for agent_id, handle in list(self._agents.items()):
            if handle.is_active:
                self.stop(agent_id)
        pending = [task for task in self._supervisors.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.cleanup_finished()

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _supervise(
        self,
        handle: AgentHandle,
        proc: asyncio.subprocess.Process,
        timeout: float | None,
    ) -> None:
        lines: list[str] = []

        async def _stream() -> bytes:
            assert proc.stdout is not None
            assert proc.stderr is not None
            stderr_task = asyncio.create_task(proc.stderr.read())
            try:
                async for raw in proc.stdout:
                    line = raw.decode(errors="replace").rstrip()
                    if not line:
                        continue
                    lines.append(line)
                    handle.current_action = line[:200]
                    self.events.emit(
                        AgentEvent.OUTPUT, self._event(handle, payload={"line": line})
                    )
                stderr = await stderr_task
            finally:
                if not stderr_task.done():
                    stderr_task.cancel()
            await proc.wait()
            return stderr

        try:
            stderr_bytes = await asyncio.wait_for(_stream(), timeout)
        except TimeoutError:
            self._kill(proc)
            await proc.wait()
            handle.output = "\n".join(lines)
            self._finish(handle, AgentStatus.ERROR, f"Agent timed out after {timeout}s")
            return
        except asyncio.CancelledError:
            self._kill(proc)
            raise

        handle.output = "\n".join(lines)
        if proc.returncode == 0:
            self._finish(handle, AgentStatus.COMPLETED)
        elif handle.id in self._stopped:
            self._finish(handle, AgentStatus.ERROR, "Agent stopped")
        else:
            tail = stderr_bytes.decode(errors="replace").strip()[-_STDERR_TAIL:]
            message = f"Agent exited with code {proc.returncode}"
            self._finish(handle, AgentStatus.ERROR, f"{message}: {tail}" if tail else message)

    def _finish(self, handle: AgentHandle, status: AgentStatus, error: str | None = None) -> None:
        handle.status = status
        handle.error_message = error
        handle.completed_at = datetime.now(UTC)
        if status is AgentStatus.COMPLETED:
            logger.info("Agent %s completed", handle.id)
            self.events.emit(AgentEvent.COMPLETED, self._event(handle))
        else:
            logger.warning("Agent %s failed: %s", handle.id, error)
            self.events.emit(AgentEvent.ERROR, self._event(handle, error=error))

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass

    @staticmethod
    def _event(
        handle: AgentHandle,
        *,
        error: str | None = None,
        payload: dict[str, object] | None = None,
    ) -> AgentEventData:
        return AgentEventData(
            agent_id=handle.id,
            session_id=handle.session_id,
            error=error,
            payload=dict(payload or {}),
        )


def build_runtime(config: AppConfig) -> CommandAgentRuntime:
    """Construct the default agent runtime for the CLI."""
    return CommandAgentRuntime(config.agent)


__all__ = ["CommandAgentRuntime", "build_runtime"]
