"""
OpenClaw Admin - Config Store
===============================
Owns every file the panel reads or writes inside the compose project:

1. .env                                   - flat KEY=VALUE file (gateway settings)
2. data/openclaw-config/.env              - derived secrets file (install step)
3. data/openclaw-config/openclaw.json     - the gateway's own config (read only)
4. data/openclaw-config/devices/*.json    - pending / paired device documents

All mutation is read whole file -> change in memory -> write whole file.
There is no locking: the last writer wins.

Usage:
    layout = ProjectLayout.from_environment()
    store = ConfigStore(layout)
    env = store.read_environment()
    store.upsert_environment_value("OPENCLAW_GATEWAY_TOKEN", "abc")
"""

import json
import os
import re
from typing import Any
from urllib.parse import quote


DEFAULT_GATEWAY_PORT = "18789"
DEFAULT_BRIDGE_PORT = "18790"
DEFAULT_ADMIN_PORT = "3000"
DEFAULT_IMAGE = "alpine/openclaw"


class ProjectLayout:
    """
    Resolved paths of the compose project the panel manages.

    When the panel itself runs inside Docker, PROJECT_DIR points at the
    mounted project and HOST_PROJECT_DIR at the same directory on the
    host, which docker compose needs to resolve volume mounts.

    Attributes:
        project_dir:       Project root as seen by this process.
        host_dir:          Project root as seen by the Docker host.
        running_in_docker: True when PROJECT_DIR was provided.
    """

    def __init__(self, project_dir: str, host_dir: str | None = None, running_in_docker: bool = False):
        self.project_dir = os.path.abspath(project_dir)
        self.host_dir = os.path.abspath(host_dir or self.project_dir)
        self.running_in_docker = running_in_docker

    @classmethod
    def from_environment(cls, default_dir: str | None = None) -> "ProjectLayout":
        """
        Build the layout from PROJECT_DIR / HOST_PROJECT_DIR.

        ADMIN_PROJECT_DIR (set by app.py --project-dir) selects a local
        project without switching to in-Docker behaviour.
        """
        docker_dir = os.environ.get("PROJECT_DIR", "")
        project_dir = docker_dir or os.environ.get("ADMIN_PROJECT_DIR") or default_dir or os.getcwd()
        return cls(
            project_dir=project_dir,
            host_dir=os.environ.get("HOST_PROJECT_DIR") or None,
            running_in_docker=bool(docker_dir),
        )

    def path(self, *parts: str) -> str:
        return os.path.join(self.project_dir, *parts)

    @property
    def compose_file(self) -> str:
        return self.path("docker-compose.yml")

    @property
    def env_file(self) -> str:
        return self.path(".env")

    @property
    def config_dir(self) -> str:
        return self.path("data", "openclaw-config")

    @property
    def workspace_dir(self) -> str:
        return self.path("data", "workspace")

    @property
    def gateway_config_file(self) -> str:
        return os.path.join(self.config_dir, "openclaw.json")

    @property
    def secrets_file(self) -> str:
        return os.path.join(self.config_dir, ".env")

    @property
    def pending_devices_file(self) -> str:
        return os.path.join(self.config_dir, "devices", "pending.json")

    @property
    def paired_devices_file(self) -> str:
        return os.path.join(self.config_dir, "devices", "paired.json")


class ConfigStore:
    """
    Read/write access to the project's environment and JSON documents.

    Attributes:
        layout: ProjectLayout that locates every file.
    """

    def __init__(self, layout: ProjectLayout):
        self.layout = layout

    # =========================================================================
    # Environment file
    # =========================================================================

    def read_environment(self) -> dict[str, str]:
        """
        Parse the .env file into an ordered mapping.

        Lines are trimmed; blank lines and '#' comments are skipped; the
        first '=' separates key from value. Values are taken literally
        (no quotes, no escapes). Later duplicates override earlier ones.
        Bytes that are not valid UTF-8 decode to U+FFFD.

        Returns:
            Mapping of keys to values, {} when the file is missing.
        """
        try:
            with open(self.layout.env_file, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError:
            return {}
        return parse_environment(content)

    def upsert_environment_value(self, key: str, value: str) -> bool:
        """
        Set KEY=value in the .env file.

        An existing KEY= line is replaced in place; otherwise the line is
        appended. All other lines are preserved byte for byte, including
        bytes that are not valid UTF-8.

        Returns:
            True on success, False when the file could not be read or written.
        """
        line = f"{key}={value}"
        pattern = re.compile(rf"^{re.escape(key)}=[^\r\n]*", re.MULTILINE)
        try:
            content = ""
            if os.path.exists(self.layout.env_file):
                with open(self.layout.env_file, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
                    content = f.read()

            if pattern.search(content):
                content = pattern.sub(lambda _: line, content, count=1)
            else:
                if content and not content.endswith("\n"):
                    content += "\n"
                content += f"{line}\n"

            with open(self.layout.env_file, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
                f.write(content)
            return True
        except OSError:
            return False

    def remove_environment_value(self, key: str) -> bool:
        """
        Drop every KEY= line from the .env file.

        Returns:
            True if at least one line was removed.

        Raises:
            OSError: If the file exists but cannot be rewritten.
        """
        if not os.path.exists(self.layout.env_file):
            return False

        with open(self.layout.env_file, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
            lines = f.readlines()

        kept = [line for line in lines if not line.strip().startswith(f"{key}=")]
        if len(kept) == len(lines):
            return False

        with open(self.layout.env_file, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.writelines(kept)
        return True

    # =========================================================================
    # JSON documents
    # =========================================================================

    def read_json_document(self, path: str, fallback: Any) -> Any:
        """Parse a whole JSON file; missing or malformed files give the fallback."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError):
            return fallback

    def write_json_document(self, path: str, data: Any) -> None:
        """Overwrite a JSON file (2-space indent), creating parent directories."""
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, indent=2, ensure_ascii=False) + "\n")

    def has_configured_channel(self, channel: str) -> bool:
        """Check the gateway's openclaw.json for a channels.<channel> object."""
        config = self.read_json_document(self.layout.gateway_config_file, {})
        channels = config.get("channels") if isinstance(config, dict) else None
        if not isinstance(channels, dict):
            return False
        return isinstance(channels.get(channel), dict)

    # =========================================================================
    # Runtime metadata
    # =========================================================================

    def runtime_meta(self) -> dict[str, Any]:
        """
        Snapshot of ports, image, token and entry URLs for the frontend.

        'installed' is true once any of the config directory, the workspace
        directory or the gateway config file exists.
        """
        env = self.read_environment()
        gateway_port = env.get("OPENCLAW_GATEWAY_PORT") or DEFAULT_GATEWAY_PORT
        bridge_port = env.get("OPENCLAW_BRIDGE_PORT") or DEFAULT_BRIDGE_PORT
        admin_port = os.environ.get("ADMIN_PORT") or env.get("ADMIN_PORT") or DEFAULT_ADMIN_PORT
        image = env.get("OPENCLAW_IMAGE") or DEFAULT_IMAGE
        gateway_token = env.get("OPENCLAW_GATEWAY_TOKEN", "").strip()

        installed = (
            os.path.exists(self.layout.config_dir)
            or os.path.exists(self.layout.workspace_dir)
            or os.path.exists(self.layout.gateway_config_file)
        )

        gateway_url = f"http://127.0.0.1:{gateway_port}/"
        gateway_url_with_token = gateway_url
        if gateway_token:
            gateway_url_with_token = f"{gateway_url}#token={quote(gateway_token, safe='')}"

        return {
            "image": image,
            "adminPort": admin_port,
            "gatewayPort": gateway_port,
            "bridgePort": bridge_port,
            "gatewayToken": gateway_token,
            "installed": installed,
            "gatewayUrl": gateway_url,
            "gatewayUrlWithToken": gateway_url_with_token,
            "healthUrl": f"{gateway_url}health",
        }


def parse_environment(content: str) -> dict[str, str]:
    """Parse KEY=VALUE lines (see ConfigStore.read_environment)."""
    values: dict[str, str] = {}
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        eq = stripped.find("=")
        if eq > 0:
            values[stripped[:eq]] = stripped[eq + 1:]
    return values
