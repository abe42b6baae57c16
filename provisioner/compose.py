"""
OpenClaw Admin - Compose Command Builder
==========================================
Shapes argument lists for the docker compose CLI.

Every gateway action goes through the same base command:

    docker compose -f <compose file> --env-file <.env> [--project-directory <host dir>] ...

The --project-directory flag is only added when the panel runs inside a
container, where volume paths must resolve against the host path.

One-shot CLI commands (plugins, channels, pairing, doctor) run in the
"openclaw-cli" service behind the "cli" profile:

    ... --profile cli run --rm openclaw-cli <args>
"""

import re

from provisioner.store import ProjectLayout


SUPPORTED_CHANNELS = ("telegram", "slack", "discord")

# Channel -> .env key holding its bot token (used by the install bootstrap)
CHANNEL_TOKEN_KEYS = {
    "telegram": "TELEGRAM_BOT_TOKEN",
    "discord": "DISCORD_BOT_TOKEN",
    "slack": "SLACK_BOT_TOKEN",
}
SLACK_APP_TOKEN_KEY = "SLACK_APP_TOKEN"

_PORT_CONFLICT_RE = re.compile(
    r"ports are not available"
    r"|address already in use"
    r"|only one usage of each socket address",
    re.IGNORECASE,
)


class ParameterError(ValueError):
    """Raised when a request parameter is missing or unsupported."""


class ComposeCommand:
    """
    Builds docker compose invocations for one project.

    Attributes:
        layout:          Project paths (compose file, .env, host dir).
        binary:          Orchestration CLI executable.
        gateway_service: Compose service name of the gateway.
        cli_service:     Compose service name of the one-shot CLI.
        cli_profile:     Compose profile that enables the CLI service.
    """

    def __init__(
        self,
        layout: ProjectLayout,
        binary: str = "docker",
        gateway_service: str = "openclaw-gateway",
        cli_service: str = "openclaw-cli",
        cli_profile: str = "cli",
    ):
        self.layout = layout
        self.binary = binary
        self.gateway_service = gateway_service
        self.cli_service = cli_service
        self.cli_profile = cli_profile

    def args(self, *args: str) -> list[str]:
        base = ["compose", "-f", self.layout.compose_file, "--env-file", self.layout.env_file]
        if self.layout.host_dir != self.layout.project_dir:
            base += ["--project-directory", self.layout.host_dir]
        return base + list(args)

    def cli_args(self, *args: str) -> list[str]:
        return self.args("--profile", self.cli_profile, *args)

    def cli_run(self, *args: str) -> list[str]:
        """Run a one-shot command in the CLI container."""
        return self.cli_args("run", "--rm", self.cli_service, *args)

    def gateway(self, *args: str) -> list[str]:
        """Apply a compose subcommand to the gateway service."""
        return self.args(*args, self.gateway_service)

    def enable_plugin(self, channel: str) -> list[str]:
        return self.cli_run("plugins", "enable", channel)

    def add_channel(self, channel: str, token: str, app_token: str | None = None) -> list[str]:
        """
        Register a messaging channel.

        Slack takes a bot token plus an optional app token; every other
        channel takes a single --token.
        """
        args = ["channels", "add", "--channel", channel]
        if channel == "slack":
            args += ["--bot-token", token]
            if app_token:
                args += ["--app-token", app_token]
        else:
            args += ["--token", token]
        return self.cli_run(*args)


def normalize_channel(channel: str | None, token: str | None) -> str:
    """
    Validate a channel-add request before anything is executed.

    Returns:
        The trimmed, lower-cased channel name.

    Raises:
        ParameterError: If the channel or token is missing, or the channel
                        is not one of SUPPORTED_CHANNELS.
    """
    normalized = str(channel or "").strip().lower()
    if not normalized or not token:
        raise ParameterError("Missing channel or token parameter")
    if normalized not in SUPPORTED_CHANNELS:
        raise ParameterError(f"Only {' / '.join(SUPPORTED_CHANNELS)} are supported")
    return normalized


def normalize_pairing(platform: str | None, code: str | None) -> tuple[str, str]:
    """
    Validate a pairing-code approval request.

    Raises:
        ParameterError: If platform or code is missing.
    """
    platform = str(platform or "").strip()
    code = str(code or "").strip()
    if not platform or not code:
        raise ParameterError("Missing platform or code parameter")
    return platform, code


def is_port_conflict_error(text: str | None) -> bool:
    """Heuristic match for "port already bound" failures across platforms."""
    if not text:
        return False
    return bool(_PORT_CONFLICT_RE.search(text))
