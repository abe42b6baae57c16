"""
OpenClaw Admin - Process Runner
=================================
Spawns external commands (docker, tar) and relays their output.

Every command runs:
    - without a shell (arguments are passed literally)
    - in the project directory
    - with TERM=dumb and FORCE_COLOR=0 so the output is plain text

Two modes:
    stream()   -> relay stdout/stderr chunks, then emit "exit" with the code.
                  A spawn failure emits "error" instead.
    run_step() -> relay chunks AND accumulate them; resolves to a StepResult.
                  A spawn failure yields code -1 with the message appended
                  to stderr. Process failures never raise.

If the awaiting task is cancelled (the browser went away), a child that is
still running receives SIGTERM, is reaped (up to TERMINATE_GRACE seconds)
and the cancellation propagates.
"""

import asyncio
import codecs
import os
from dataclasses import dataclass

from provisioner.sink import ProgressSink


PLAIN_OUTPUT_ENV = {"TERM": "dumb", "FORCE_COLOR": "0"}
READ_CHUNK_SIZE = 4096
TERMINATE_GRACE = 5.0


@dataclass
class StepResult:
    """Outcome of one external invocation."""

    code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.code == 0


class ProcessRunner:
    """
    Runs external commands for the workflow engine.

    Attributes:
        cwd:           Working directory for every child process.
        env_overrides: Variables layered over os.environ for children.
    """

    def __init__(self, cwd: str, env_overrides: dict[str, str] | None = None):
        self.cwd = cwd
        self.env_overrides = dict(PLAIN_OUTPUT_ENV)
        if env_overrides:
            self.env_overrides.update(env_overrides)

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.env_overrides)
        return env

    async def stream(self, sink: ProgressSink, command: str, args: list[str]) -> int:
        """
        Pass-through mode: relay output, then emit the exit event.

        Returns:
            The exit code, or -1 when the command could not be spawned.
        """
        try:
            process = await self._spawn(command, args)
        except OSError as e:
            await sink.error(_spawn_message(command, e))
            return -1

        code = await self._relay(process, sink)
        await sink.exit(code)
        return code

    async def run_step(self, sink: ProgressSink, command: str, args: list[str]) -> StepResult:
        """
        Step mode: relay output and collect it for the caller to inspect.

        Returns:
            StepResult with the exit code and the full stdout/stderr text.
        """
        try:
            process = await self._spawn(command, args)
        except OSError as e:
            message = _spawn_message(command, e)
            await sink.error(message)
            return StepResult(code=-1, stderr=message)

        stdout: list[str] = []
        stderr: list[str] = []
        code = await self._relay(process, sink, stdout, stderr)
        return StepResult(code=code, stdout="".join(stdout), stderr="".join(stderr))

    # -- Internal helpers ------------------------------------------------------

    async def _spawn(self, command: str, args: list[str]) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=self.cwd,
            env=self._environment(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _relay(
        self,
        process: asyncio.subprocess.Process,
        sink: ProgressSink,
        stdout: list[str] | None = None,
        stderr: list[str] | None = None,
    ) -> int:
        """Pump both pipes until EOF, then wait for the exit code."""
        try:
            await asyncio.gather(
                _pump(process.stdout, "stdout", sink, stdout),
                _pump(process.stderr, "stderr", sink, stderr),
            )
            return await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                else:
                    await _reap(process)
            raise


async def _pump(
    reader: asyncio.StreamReader,
    stream_name: str,
    sink: ProgressSink,
    collected: list[str] | None,
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await reader.read(READ_CHUNK_SIZE)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            if collected is not None:
                collected.append(text)
            await sink.emit(stream_name, text)
        if not chunk:
            return


async def _reap(process: asyncio.subprocess.Process) -> None:
    """Wait briefly for a terminated child so its pipes are closed."""
    try:
        await asyncio.wait_for(asyncio.shield(process.wait()), TERMINATE_GRACE)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        pass


def _spawn_message(command: str, error: OSError) -> str:
    if error.strerror:
        return f"spawn {command}: {error.strerror}"
    return str(error)
