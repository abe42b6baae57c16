"""
OpenClaw Admin - Provisioning Workflows
=========================================
Multi-step gateway operations with streamed progress.

Every workflow reports through a ProgressSink and ends its stream with
an "exit" event (pass-through commands get theirs from the runner).

Install sequence:
    0. Materialize OPENCLAW_GATEWAY_TOKEN (generated + persisted if absent)
    1. Validate     - at least one AI provider key must be configured
    2. Directories  - data/openclaw-config and data/workspace
    3. Secrets      - present AI keys -> data/openclaw-config/.env (0600)
    4. Channels     - optional, best effort: one per bot token in .env
    5. Pull image   - abort with its code on failure
    6. Start        - abort with its code on failure (port-conflict hints)
    7. Health poll  - fixed budget; exit 0 when healthy, 1 otherwise

Steps run strictly in order; a failing required step ends the workflow
and its exit code becomes the workflow's code. Nothing is rolled back.

Secondary workflows:
    update       - pull -> up -d
    add_channel  - enable plugin -> channels add -> restart -> verify config
    backup, doctor, logs, status, start, stop, restart, pair
                 - single pass-through invocations
    approve_pending - device pairing reconciliation (no external command)
"""

import os
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx

from provisioner.compose import (
    CHANNEL_TOKEN_KEYS,
    SLACK_APP_TOKEN_KEY,
    ComposeCommand,
    is_port_conflict_error,
    normalize_channel,
    normalize_pairing,
)
from provisioner.health import DEFAULT_TIMEOUT, HealthChecker, resolve_health_url
from provisioner.pairing import approve_pending_device_pairings
from provisioner.runner import ProcessRunner, StepResult
from provisioner.sink import ProgressSink
from provisioner.store import DEFAULT_GATEWAY_PORT, ConfigStore


AI_CREDENTIAL_KEYS = ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY")
GATEWAY_TOKEN_KEY = "OPENCLAW_GATEWAY_TOKEN"


# =============================================================================
# Step sequencing
# =============================================================================

@dataclass
class Step:
    """
    One numbered workflow step.

    Attributes:
        title:      Header text shown as "=== [n/total] title ===".
        action:     Coroutine factory producing the step's StepResult.
        on_failure: Optional hook awaited with the failing result before
                    the sequence stops.
    """

    title: str
    action: Callable[[], Awaitable[StepResult]]
    on_failure: Callable[[StepResult], Awaitable[None]] | None = None


async def run_steps(sink: ProgressSink, steps: list[Step]) -> StepResult:
    """
    Run steps in order, stopping at the first non-zero result.

    Returns:
        The failing step's result, or the last result when all succeeded.
    """
    result = StepResult(code=0)
    total = len(steps)
    for index, step in enumerate(steps, start=1):
        separator = "" if index == 1 else "\n"
        await sink.stdout(f"{separator}=== [{index}/{total}] {step.title} ===\n")
        result = await step.action()
        if not result.ok:
            if step.on_failure is not None:
                await step.on_failure(result)
            return result
    return result


# =============================================================================
# Workflow engine
# =============================================================================

class WorkflowEngine:
    """
    Orchestrates gateway operations through docker compose.

    Attributes:
        store:           ConfigStore for .env and JSON documents.
        compose:         ComposeCommand that shapes CLI arguments.
        runner:          ProcessRunner executing the commands.
        health_url:      Explicit health URL (None -> derived per call).
        health_attempts: Number of health probes after start.
        health_interval: Seconds slept before each probe.
        health_timeout:  Per-probe HTTP timeout in seconds.
        logs_tail:       Default line count for the log tail.
    """

    def __init__(
        self,
        store: ConfigStore,
        compose: ComposeCommand,
        runner: ProcessRunner,
        health_url: str | None = None,
        health_attempts: int = 30,
        health_interval: float = 2.0,
        health_timeout: float = DEFAULT_TIMEOUT,
        logs_tail: int = 100,
        health_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.store = store
        self.compose = compose
        self.runner = runner
        self.health_url = health_url
        self.health_attempts = health_attempts
        self.health_interval = health_interval
        self.health_timeout = health_timeout
        self.logs_tail = logs_tail
        self.health_transport = health_transport
        self.clock = clock or (lambda: int(time.time() * 1000))

    # -- Shared helpers --------------------------------------------------------

    async def _run(self, sink: ProgressSink, args: list[str]) -> StepResult:
        return await self.runner.run_step(sink, self.compose.binary, args)

    async def _stream(self, sink: ProgressSink, args: list[str]) -> int:
        return await self.runner.stream(sink, self.compose.binary, args)

    def health_checker(self, env: dict[str, str] | None = None) -> HealthChecker:
        """Build a checker for the current gateway port."""
        if env is None:
            env = self.store.read_environment()
        url = resolve_health_url(
            self.health_url,
            self.store.layout.running_in_docker,
            env.get("OPENCLAW_GATEWAY_PORT") or DEFAULT_GATEWAY_PORT,
            self.compose.gateway_service,
        )
        return HealthChecker(url, timeout=self.health_timeout, transport=self.health_transport)

    async def check_health(self) -> bool:
        return await self.health_checker().check()

    async def ensure_gateway_token(self, sink: ProgressSink | None = None) -> str:
        """
        Return the gateway token, generating and persisting one if absent.

        A failed write is only a warning: the generated value is still
        returned so the running workflow can use it.
        """
        token = self.store.read_environment().get(GATEWAY_TOKEN_KEY, "").strip()
        if token:
            return token

        generated = secrets.token_hex(24)
        if self.store.upsert_environment_value(GATEWAY_TOKEN_KEY, generated):
            if sink:
                await sink.stdout(f"Generated {GATEWAY_TOKEN_KEY} and saved it to .env\n")
        elif sink:
            await sink.stderr(
                f"Warning: could not save {GATEWAY_TOKEN_KEY} to .env, set it there manually\n"
            )
        return generated

    # =========================================================================
    # Install
    # =========================================================================

    async def install(self, sink: ProgressSink) -> int:
        """First-time install; see the module docstring for the sequence."""
        env = self.store.read_environment()
        env[GATEWAY_TOKEN_KEY] = await self.ensure_gateway_token(sink)
        gateway_port = env.get("OPENCLAW_GATEWAY_PORT") or DEFAULT_GATEWAY_PORT
        bots = _bot_tokens(env)
        layout = self.store.layout

        async def validate() -> StepResult:
            if not any(env.get(key) for key in AI_CREDENTIAL_KEYS):
                await sink.stderr("Error: no AI API key is configured in .env\n")
                await sink.stderr(
                    f"Set one of {' / '.join(AI_CREDENTIAL_KEYS)} in the .env file\n"
                )
                return StepResult(code=1)
            await sink.stdout("API key configured\n")
            for channel, _, _ in bots:
                await sink.stdout(f"{channel.capitalize()} bot token configured\n")
            return StepResult(code=0)

        async def create_directories() -> StepResult:
            os.makedirs(layout.config_dir, exist_ok=True)
            os.makedirs(layout.workspace_dir, exist_ok=True)
            await sink.stdout(f"{layout.config_dir}\n{layout.workspace_dir}\n")
            return StepResult(code=0)

        async def write_secrets() -> StepResult:
            content = "".join(
                f"{key}={env[key]}\n" for key in AI_CREDENTIAL_KEYS if env.get(key)
            )
            _write_private_file(layout.secrets_file, content)
            await sink.stdout("Configuration written to data/openclaw-config/.env\n")
            return StepResult(code=0)

        async def configure_channels() -> StepResult:
            for channel, token, app_token in bots:
                await self._bootstrap_channel(sink, channel, token, app_token)
            return StepResult(code=0)

        async def port_conflict_hints(result: StepResult) -> None:
            if not is_port_conflict_error(result.stderr):
                return
            await sink.stderr(f"\nPort conflict detected: 127.0.0.1:{gateway_port} is already in use\n")
            await sink.stderr(f"Check with: lsof -nP -iTCP:{gateway_port} -sTCP:LISTEN\n")
            await sink.stderr("How to fix:\n")
            await sink.stderr("  1) stop the process/container holding the port, then retry the install\n")
            await sink.stderr("  2) or change OPENCLAW_GATEWAY_PORT in .env to a free port and retry\n")

        steps = [
            Step("Validate environment", validate),
            Step("Create data directories", create_directories),
            Step("Write API configuration", write_secrets),
        ]
        if bots:
            steps.append(Step("Configure messaging channels (optional)", configure_channels))
        steps += [
            Step("Pull Docker image", lambda: self._run(sink, self.compose.gateway("pull"))),
            Step(
                "Start OpenClaw gateway",
                lambda: self._run(sink, self.compose.gateway("up", "-d")),
                on_failure=port_conflict_hints,
            ),
        ]

        result = await run_steps(sink, steps)
        if not result.ok:
            await sink.exit(result.code)
            return result.code

        healthy = await self._wait_for_gateway(sink, env)
        code = 0 if healthy else 1
        await sink.exit(code)
        return code

    async def _bootstrap_channel(
        self,
        sink: ProgressSink,
        channel: str,
        token: str,
        app_token: str | None,
    ) -> bool:
        """Enable + register one channel; failures are warnings only."""
        enabled = await self._run(sink, self.compose.enable_plugin(channel))
        if not enabled.ok:
            await sink.stderr(
                f"Warning: enabling the {channel} plugin failed, skipped automatic channel setup\n"
            )
            return False

        added = await self._run(sink, self.compose.add_channel(channel, token, app_token))
        if not added.ok:
            await sink.stderr(
                f"Warning: writing the {channel} channel config failed, "
                "retry later with \"Add channel\" in the admin panel\n"
            )
            return False

        await sink.stdout(f"{channel.capitalize()} channel configured\n")
        return True

    async def _wait_for_gateway(self, sink: ProgressSink, env: dict[str, str]) -> bool:
        await sink.stdout("\nWaiting for the service to become ready")
        healthy = await self.health_checker(env).wait_until_healthy(
            self.health_attempts,
            self.health_interval,
            on_retry=lambda: sink.stdout("."),
        )
        await sink.stdout("\n")

        if healthy:
            await sink.stdout("\nOpenClaw install complete, the service is ready!\n")
        else:
            budget = self.health_attempts * self.health_interval
            await sink.stderr(
                f"\nWarning: the service was not ready within {budget:g} seconds, check the logs\n"
            )
        return healthy

    # =========================================================================
    # Secondary workflows
    # =========================================================================

    async def update(self, sink: ProgressSink) -> int:
        """Pull the latest image, then recreate the gateway container."""
        result = await run_steps(sink, [
            Step("Pull latest image", lambda: self._run(sink, self.compose.gateway("pull"))),
            Step("Recreate container", lambda: self._run(sink, self.compose.gateway("up", "-d"))),
        ])
        await sink.exit(result.code)
        return result.code

    async def add_channel(
        self,
        sink: ProgressSink,
        channel: str,
        token: str,
        app_token: str | None = None,
    ) -> int:
        """
        Enable, register and activate a messaging channel.

        Raises:
            ParameterError: Before any command runs, for a missing token or
                            an unsupported channel.
        """
        channel = normalize_channel(channel, token)

        result = await run_steps(sink, [
            Step("Enable channel plugin", lambda: self._run(sink, self.compose.enable_plugin(channel))),
            Step(
                "Write channel config",
                lambda: self._run(sink, self.compose.add_channel(channel, token, app_token)),
            ),
            Step(
                "Restart gateway to load the plugin",
                lambda: self._run(sink, self.compose.gateway("restart")),
            ),
        ])
        if not result.ok:
            await sink.exit(result.code)
            return result.code

        if self.store.has_configured_channel(channel):
            await sink.stdout(f"Channel {channel} is configured and active\n")
        else:
            await sink.stderr(
                f"Warning: channels.{channel} not found in openclaw.json, "
                "run \"Status\" to confirm\n"
            )
        await sink.exit(0)
        return 0

    async def approve_pending(self, sink: ProgressSink) -> int:
        """Approve every pending device pairing request."""
        try:
            result = approve_pending_device_pairings(self.store, self.clock)
        except Exception as e:
            await sink.error(str(e) or type(e).__name__)
            await sink.exit(1)
            return 1

        if result["approved"] > 0:
            await sink.stdout(f"Approved device pairing requests: {result['approved']}\n")
            await sink.stdout("Refresh the OpenClaw console page and retry Chat\n")
        else:
            await sink.stdout("No pending device pairing requests\n")
        await sink.exit(0)
        return 0

    async def backup(self, sink: ProgressSink, now: datetime | None = None) -> int:
        """Archive data/ into openclaw-backup-<timestamp>.tar.gz in the project."""
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S")
        filename = f"openclaw-backup-{stamp}.tar.gz"
        await sink.stdout(f"Creating {filename}\n")
        return await self.runner.stream(
            sink, "tar", ["czf", filename, "-C", self.store.layout.project_dir, "data/"]
        )

    async def pair(self, sink: ProgressSink, platform: str, code: str) -> int:
        """Approve a channel pairing code through the CLI container."""
        platform, code = normalize_pairing(platform, code)
        return await self._stream(sink, self.compose.cli_run("pairing", "approve", platform, code))

    async def doctor(self, sink: ProgressSink) -> int:
        return await self._stream(sink, self.compose.cli_run("doctor"))

    async def logs(self, sink: ProgressSink, tail: int | None = None) -> int:
        """Follow gateway logs until the client disconnects."""
        lines = str(tail or self.logs_tail)
        return await self._stream(sink, self.compose.gateway("logs", "-f", "--tail", lines))

    async def status(self, sink: ProgressSink) -> int:
        return await self._stream(sink, self.compose.args("ps", "-a"))

    async def start(self, sink: ProgressSink) -> int:
        return await self._stream(sink, self.compose.gateway("up", "-d"))

    async def stop(self, sink: ProgressSink) -> int:
        """Stop only the gateway; the admin panel keeps running."""
        return await self._stream(sink, self.compose.gateway("stop"))

    async def restart(self, sink: ProgressSink) -> int:
        return await self._stream(sink, self.compose.gateway("restart"))


# -- Module helpers -------------------------------------------------------------

def _bot_tokens(env: dict[str, str]) -> list[tuple[str, str, str | None]]:
    """(channel, token, app_token) for every bot token present in .env."""
    bots = []
    for channel, key in CHANNEL_TOKEN_KEYS.items():
        token = env.get(key, "").strip()
        if not token:
            continue
        app_token = env.get(SLACK_APP_TOKEN_KEY, "").strip() if channel == "slack" else ""
        bots.append((channel, token, app_token or None))
    return bots


def _write_private_file(path: str, content: str) -> None:
    """Write a file readable by the owner only (0600), even if it existed."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    os.chmod(path, 0o600)
