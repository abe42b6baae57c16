"""
OpenClaw Admin - Provisioner Package
======================================
The gateway provisioning engine behind the admin panel.

Modules:
    - sink.py      : Progress event types and sinks
    - runner.py    : External command execution (stream / step modes)
    - store.py     : Project layout, .env and JSON document access
    - compose.py   : docker compose argument shaping, channel validation
    - health.py    : Gateway health probe and readiness poll
    - pairing.py   : Device pairing reconciliation
    - workflows.py : Install / update / channel-add and pass-through workflows
    - oplog.py     : Per-day operation log files + dashboard broadcast

Usage:
    from provisioner import build_engine

    engine = build_engine(ProjectLayout("/opt/openclaw"))
    await engine.install(sink)
"""

import os

from provisioner.compose import ComposeCommand, ParameterError
from provisioner.runner import ProcessRunner, StepResult
from provisioner.sink import ProgressEvent, ProgressSink
from provisioner.store import ConfigStore, ProjectLayout
from provisioner.workflows import WorkflowEngine


def build_engine(layout: ProjectLayout, settings: dict | None = None) -> WorkflowEngine:
    """
    Wire store, compose builder and runner into a WorkflowEngine.

    Args:
        layout:   Resolved project paths.
        settings: Panel settings (see server.config.DEFAULTS); only the
                  'docker', 'gateway', 'install' and 'logs' sections are read.
    """
    settings = settings or {}
    docker = settings.get("docker", {})
    install = settings.get("install", {})

    compose = ComposeCommand(
        layout,
        binary=docker.get("binary", "docker"),
        gateway_service=docker.get("gateway_service", "openclaw-gateway"),
        cli_service=docker.get("cli_service", "openclaw-cli"),
        cli_profile=docker.get("cli_profile", "cli"),
    )
    return WorkflowEngine(
        store=ConfigStore(layout),
        compose=compose,
        runner=ProcessRunner(layout.project_dir),
        health_url=os.environ.get("HEALTH_URL") or settings.get("gateway", {}).get("health_url") or None,
        health_attempts=int(install.get("health_attempts", 30)),
        health_interval=float(install.get("health_interval", 2)),
        health_timeout=float(install.get("health_timeout", 3)),
        logs_tail=int(settings.get("logs", {}).get("tail", 100)),
    )


__all__ = [
    "build_engine",
    "ComposeCommand",
    "ConfigStore",
    "ParameterError",
    "ProcessRunner",
    "ProgressEvent",
    "ProgressSink",
    "ProjectLayout",
    "StepResult",
    "WorkflowEngine",
]
