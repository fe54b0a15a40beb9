"""Supervised execution of external processes with journal streaming."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple

from .config import AgentConfig
from .constants import SPAWN_FAILURE_CODE, STREAM_CHUNK_SIZE
from .contracts import AuditTrailError, CommandResult, EventRecord, EventSource
from .journal import EventJournal

logger = logging.getLogger(__name__)


def agent_invocation(prompt: str, agent: AgentConfig) -> Tuple[str, List[str]]:
    """Return the executable and argument vector that run the agent on ``prompt``."""
    args = [*agent.args, prompt]
    if os.name == "nt" and agent.command == "codex":
        codex_js = (
            Path(os.getenv("APPDATA", ""))
            / "npm"
            / "node_modules"
            / "@openai"
            / "codex"
            / "bin"
            / "codex.js"
        )
        if codex_js.exists():
            return "node", [str(codex_js), *args]
    return agent.command, args


def platform_command(command: str) -> str:
    """Map bare script launchers to their Windows shims."""
    if os.name == "nt" and command == "npm":
        return "npm.cmd"
    return command


class CommandExecutor:
    """Spawn one process at a time and record everything it does.

    Every invocation produces a ``command_start`` event, one ``stdout`` or
    ``stderr`` event per received chunk and exactly one terminal event:
    ``command_end`` on close or ``command_error`` when spawning failed.
    """

    def __init__(
        self, journal: EventJournal, transcript_path: Optional[str | Path] = None
    ) -> None:
        self._journal = journal
        self._transcript_path = Path(transcript_path) if transcript_path else None

    async def run(
        self,
        *,
        source: EventSource,
        cwd: str,
        command: str,
        command_id: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        use_shell: bool = False,
    ) -> CommandResult:
        """Run ``command`` to completion and return its result.

        Args:
            source: Journal source tag for every event of this invocation.
            cwd: Working directory of the child process.
            command: Executable name, or full command text when ``use_shell``.
            command_id: Correlation id shared by all events of this invocation.
            args: Argument vector (ignored in shell mode).
            timeout: Seconds before the process is terminated; ``None`` or a
                non-positive value disables the limit.
            use_shell: Interpret ``command`` with the system shell.
        """
        args = list(args)
        if timeout is not None and timeout <= 0:
            timeout = None
        await self._emit(
            source,
            "command_start",
            {"command_id": command_id, "command": command, "args": args, "cwd": cwd},
        )

        with self._open_transcript() as transcript:
            header = f"\n$ {' '.join([command, *args])}\n"
            self._write_transcript(transcript, header.encode("utf-8"))
            try:
                if use_shell:
                    process = await asyncio.create_subprocess_shell(
                        command,
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.PIPE,
                        cwd=cwd,
                        start_new_session=True,
                    )
                else:
                    process = await asyncio.create_subprocess_exec(
                        command,
                        *args,
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.PIPE,
                        cwd=cwd,
                        start_new_session=True,
                    )
            except (OSError, ValueError) as exc:
                logger.error(f"Failed to spawn {command!r} (command_id={command_id}): {exc}")
                await self._emit(
                    source,
                    "command_error",
                    {"command_id": command_id, "message": str(exc), "name": type(exc).__name__},
                )
                return CommandResult(code=SPAWN_FAILURE_CODE, signal=None, timed_out=False)

            logger.info(f"Started {command!r} pid={process.pid} (command_id={command_id})")
            pumps = [
                asyncio.ensure_future(
                    self._pump(process.stdout, "stdout", source, command_id, transcript)
                ),
                asyncio.ensure_future(
                    self._pump(process.stderr, "stderr", source, command_id, transcript)
                ),
            ]
            closed = asyncio.ensure_future(self._wait_closed(process, pumps))
            timed_out = False
            try:
                try:
                    returncode = await asyncio.wait_for(asyncio.shield(closed), timeout)
                except asyncio.TimeoutError:
                    timed_out = True
                    logger.warning(
                        f"Command {command!r} exceeded {timeout}s, terminating (command_id={command_id})"
                    )
                    await self._emit(
                        source,
                        "command_timeout",
                        {"command_id": command_id, "timeout_sec": timeout},
                    )
                    _terminate(process)
                    returncode = await closed
            except BaseException:
                _terminate(process)
                for task in (*pumps, closed):
                    if not task.done():
                        task.cancel()
                raise

        result = _to_result(returncode, timed_out)
        await self._emit(
            source,
            "command_end",
            {
                "command_id": command_id,
                "code": result.code,
                "signal": result.signal,
                "timed_out": result.timed_out,
            },
        )
        logger.info(
            f"Finished {command!r} code={result.code} signal={result.signal} "
            f"timed_out={result.timed_out} (command_id={command_id})"
        )
        return result

    async def _wait_closed(
        self, process: asyncio.subprocess.Process, pumps: List[asyncio.Future]
    ) -> int:
        await asyncio.gather(*pumps)
        return await process.wait()

    async def _pump(
        self,
        stream: Optional[asyncio.StreamReader],
        kind: str,
        source: EventSource,
        command_id: str,
        transcript: Optional[BinaryIO],
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(STREAM_CHUNK_SIZE)
            final = not chunk
            text = decoder.decode(chunk, final=final)
            if chunk:
                self._write_transcript(transcript, chunk)
            if text:
                await self._emit(source, kind, {"command_id": command_id, "text": text})
            if final:
                return

    async def _emit(self, source: EventSource, kind: str, payload: dict) -> None:
        await self._journal.append(EventRecord(source=source, kind=kind, payload=payload))

    def _open_transcript(self):
        if self._transcript_path is None:
            return _NullTranscript()
        try:
            return open(self._transcript_path, "ab")
        except OSError as exc:
            raise AuditTrailError(
                f"Failed to open transcript {self._transcript_path}: {exc}"
            ) from exc

    def _write_transcript(self, transcript: Optional[BinaryIO], data: bytes) -> None:
        if transcript is None:
            return
        try:
            transcript.write(data)
            transcript.flush()
        except OSError as exc:
            raise AuditTrailError(
                f"Failed to write transcript {self._transcript_path}: {exc}"
            ) from exc


class _NullTranscript:
    """Context manager standing in for a transcript file that is not kept."""

    def __enter__(self) -> None:
        return None

    def __exit__(self, *exc_info: object) -> None:
        return None


def _terminate(process: asyncio.subprocess.Process) -> None:
    """Send SIGTERM to the process group; best effort."""
    if process.returncode is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGTERM)
        else:
            process.terminate()
    except ProcessLookupError:
        pass


def _to_result(returncode: int, timed_out: bool) -> CommandResult:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return CommandResult(code=None, signal=name, timed_out=timed_out)
    return CommandResult(code=returncode, signal=None, timed_out=timed_out)
