"""Tests for the provisioning workflows, driven by a scripted runner."""

import os
import stat
from datetime import datetime
from unittest.mock import patch

import pytest

from provisioner import build_engine
from provisioner.compose import ParameterError
from provisioner.runner import StepResult
from provisioner.workflows import Step, run_steps
from tests.conftest import write_env, write_json


AI_ENV = "OPENAI_API_KEY=sk-test\n"


def layout_env(engine) -> str:
    return engine.store.layout.env_file


class TestRunSteps:
    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, sink):
        ran = []
        failures = []

        def action(name, code):
            async def _run():
                ran.append(name)
                return StepResult(code=code)
            return _run

        async def on_failure(result):
            failures.append(result.code)

        result = await run_steps(sink, [
            Step("one", action("one", 0)),
            Step("two", action("two", 9), on_failure=on_failure),
            Step("three", action("three", 0)),
        ])
        assert result.code == 9
        assert ran == ["one", "two"]
        assert failures == [9]
        assert sink.text("stdout") == "=== [1/3] one ===\n\n=== [2/3] two ===\n"

    @pytest.mark.asyncio
    async def test_all_succeed(self, sink):
        async def ok():
            return StepResult(code=0, stdout="done")

        result = await run_steps(sink, [Step("a", ok), Step("b", ok)])
        assert result.ok
        assert result.stdout == "done"


class TestInstall:
    @pytest.mark.asyncio
    async def test_success(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV)
        code = await engine.install(sink)

        assert code == 0
        assert sink.exit_code == 0
        assert runner.subcommands() == ["pull", "up"]
        out = sink.text("stdout")
        assert "=== [1/5] Validate environment ===" in out
        assert "=== [5/5] Start OpenClaw gateway ===" in out
        assert "the service is ready" in out
        assert os.path.isdir(layout.config_dir)
        assert os.path.isdir(layout.workspace_dir)

    @pytest.mark.asyncio
    async def test_secrets_file_is_private(self, engine, store, layout, sink):
        write_env(layout, AI_ENV + "ANTHROPIC_API_KEY=ak\nTELEGRAM_BOT_TOKEN=\n")
        await engine.install(sink)

        with open(layout.secrets_file) as f:
            assert f.read() == "OPENAI_API_KEY=sk-test\nANTHROPIC_API_KEY=ak\n"
        assert stat.S_IMODE(os.stat(layout.secrets_file).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_missing_credentials_runs_nothing(self, engine, runner, layout, sink):
        write_env(layout, "TELEGRAM_BOT_TOKEN=t\n")
        code = await engine.install(sink)

        assert code == 1
        assert sink.exit_code == 1
        assert runner.calls == []
        assert "no AI API key" in sink.text("stderr")
        assert not os.path.exists(layout.config_dir)

    @pytest.mark.asyncio
    async def test_generates_and_persists_gateway_token(self, engine, store, layout, sink):
        write_env(layout, AI_ENV)
        await engine.install(sink)

        token = store.read_environment()["OPENCLAW_GATEWAY_TOKEN"]
        assert len(token) == 48
        int(token, 16)
        assert "Generated OPENCLAW_GATEWAY_TOKEN" in sink.text("stdout")

    @pytest.mark.asyncio
    async def test_existing_gateway_token_is_kept(self, engine, store, layout, sink):
        write_env(layout, AI_ENV + "OPENCLAW_GATEWAY_TOKEN=keep-me\n")
        await engine.install(sink)

        assert store.read_environment()["OPENCLAW_GATEWAY_TOKEN"] == "keep-me"
        assert "Generated" not in sink.text("stdout")

    @pytest.mark.asyncio
    async def test_token_write_failure_is_a_warning(self, engine, store, layout, sink, monkeypatch):
        write_env(layout, AI_ENV)
        monkeypatch.setattr(store, "upsert_environment_value", lambda key, value: False)
        code = await engine.install(sink)

        assert code == 0
        assert "could not save OPENCLAW_GATEWAY_TOKEN" in sink.text("stderr")

    @pytest.mark.asyncio
    async def test_pull_failure_aborts(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV)
        runner.script("pull", code=7, stderr="pull access denied\n")
        code = await engine.install(sink)

        assert code == 7
        assert sink.exit_code == 7
        assert runner.subcommands() == ["pull"]

    @pytest.mark.asyncio
    async def test_port_conflict_hints(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV + "OPENCLAW_GATEWAY_PORT=19000\n")
        runner.script("up", code=1, stderr="bind: address already in use\n")
        code = await engine.install(sink)

        assert code == 1
        err = sink.text("stderr")
        assert "Port conflict detected: 127.0.0.1:19000" in err
        assert "lsof -nP -iTCP:19000 -sTCP:LISTEN" in err

    @pytest.mark.asyncio
    async def test_other_start_failure_has_no_port_hint(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV)
        runner.script("up", code=1, stderr="no such image\n")
        code = await engine.install(sink)

        assert code == 1
        assert "Port conflict" not in sink.text("stderr")

    @pytest.mark.asyncio
    async def test_unhealthy_gateway(self, make_engine, runner, layout, sink):
        write_env(layout, AI_ENV)
        engine = make_engine(health_status=503, attempts=2)
        code = await engine.install(sink)

        assert code == 1
        assert sink.exit_code == 1
        assert "Waiting for the service to become ready..\n" in sink.text("stdout")
        assert "was not ready" in sink.text("stderr")


class TestInstallChannelBootstrap:
    @pytest.mark.asyncio
    async def test_configures_channel_from_bot_token(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV + "TELEGRAM_BOT_TOKEN=123:abc\n")
        code = await engine.install(sink)

        assert code == 0
        assert runner.subcommands() == ["plugins", "channels", "pull", "up"]
        assert "=== [4/6] Configure messaging channels (optional) ===" in sink.text("stdout")
        assert "Telegram channel configured" in sink.text("stdout")

    @pytest.mark.asyncio
    async def test_plugin_failure_is_best_effort(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV + "TELEGRAM_BOT_TOKEN=123:abc\n")
        runner.script("plugins", code=1)
        code = await engine.install(sink)

        assert code == 0
        assert runner.subcommands() == ["plugins", "pull", "up"]
        assert "enabling the telegram plugin failed" in sink.text("stderr")

    @pytest.mark.asyncio
    async def test_channel_write_failure_is_best_effort(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV + "DISCORD_BOT_TOKEN=d\n")
        runner.script("channels", code=2)
        code = await engine.install(sink)

        assert code == 0
        assert "writing the discord channel config failed" in sink.text("stderr")

    @pytest.mark.asyncio
    async def test_slack_app_token(self, engine, runner, layout, sink):
        write_env(layout, AI_ENV + "SLACK_BOT_TOKEN=xoxb-1\nSLACK_APP_TOKEN=xapp-1\n")
        await engine.install(sink)

        channel_args = [args for _, args in runner.calls if "channels" in args][0]
        assert channel_args[-4:] == ["--bot-token", "xoxb-1", "--app-token", "xapp-1"]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_pull_then_recreate(self, engine, runner, sink):
        code = await engine.update(sink)
        assert code == 0
        assert runner.subcommands() == ["pull", "up"]
        assert "=== [2/2] Recreate container ===" in sink.text("stdout")

    @pytest.mark.asyncio
    async def test_pull_failure_skips_recreate(self, engine, runner, sink):
        runner.script("pull", code=4)
        code = await engine.update(sink)
        assert code == 4
        assert sink.exit_code == 4
        assert runner.subcommands() == ["pull"]


class TestAddChannel:
    @pytest.mark.asyncio
    async def test_unsupported_channel_runs_nothing(self, engine, runner, sink):
        with pytest.raises(ParameterError):
            await engine.add_channel(sink, "whatsapp", "t")
        assert runner.calls == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_missing_token_runs_nothing(self, engine, runner, sink):
        with pytest.raises(ParameterError):
            await engine.add_channel(sink, "telegram", "")
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_configured_channel(self, engine, runner, layout, sink):
        write_json(layout.gateway_config_file, {"channels": {"discord": {"enabled": True}}})
        code = await engine.add_channel(sink, " Discord ", "tok")

        assert code == 0
        assert runner.subcommands() == ["plugins", "channels", "restart"]
        assert "Channel discord is configured and active" in sink.text("stdout")

    @pytest.mark.asyncio
    async def test_missing_config_entry_is_a_warning(self, engine, runner, sink):
        code = await engine.add_channel(sink, "telegram", "tok")

        assert code == 0
        assert sink.exit_code == 0
        assert "channels.telegram not found" in sink.text("stderr")

    @pytest.mark.asyncio
    async def test_restart_failure(self, engine, runner, sink):
        runner.script("restart", code=5)
        code = await engine.add_channel(sink, "slack", "xoxb", "xapp")
        assert code == 5
        assert sink.exit_code == 5


class TestApprovePending:
    @pytest.mark.asyncio
    async def test_reports_approved_count(self, engine, layout, sink):
        write_json(layout.pending_devices_file, {"r1": {"deviceId": "d1"}})
        code = await engine.approve_pending(sink)
        assert code == 0
        assert "Approved device pairing requests: 1" in sink.text("stdout")

    @pytest.mark.asyncio
    async def test_nothing_pending(self, engine, sink):
        await engine.approve_pending(sink)
        assert "No pending device pairing requests" in sink.text("stdout")
        assert sink.exit_code == 0

    @pytest.mark.asyncio
    async def test_failure_emits_error(self, engine, sink):
        with patch(
            "provisioner.workflows.approve_pending_device_pairings",
            side_effect=OSError("disk full"),
        ):
            code = await engine.approve_pending(sink)
        assert code == 1
        assert [(e.type, e.data) for e in sink.events] == [
            ("error", "disk full"),
            ("exit", {"code": 1}),
        ]


class TestPassThrough:
    @pytest.mark.asyncio
    async def test_backup(self, engine, runner, layout, sink):
        code = await engine.backup(sink, now=datetime(2026, 10, 17, 9, 12, 44))
        assert code == 0
        assert runner.calls == [(
            "tar",
            ["czf", "openclaw-backup-20261017T091244.tar.gz", "-C", layout.project_dir, "data/"],
        )]
        assert sink.text("stdout").startswith("Creating openclaw-backup-20261017T091244.tar.gz")

    @pytest.mark.asyncio
    async def test_pair(self, engine, runner, sink):
        await engine.pair(sink, "telegram", "ABC123")
        assert runner.calls[0][1][-4:] == ["pairing", "approve", "telegram", "ABC123"]

    @pytest.mark.asyncio
    async def test_logs_default_and_custom_tail(self, engine, runner, sink):
        await engine.logs(sink)
        await engine.logs(sink, tail=20)
        assert runner.calls[0][1][-5:] == ["logs", "-f", "--tail", "100", "openclaw-gateway"]
        assert runner.calls[1][1][-5:] == ["logs", "-f", "--tail", "20", "openclaw-gateway"]

    @pytest.mark.asyncio
    async def test_lifecycle_commands(self, engine, runner, sink):
        await engine.status(sink)
        await engine.start(sink)
        await engine.stop(sink)
        await engine.restart(sink)
        await engine.doctor(sink)
        tails = [args[-3:] for _, args in runner.calls]
        assert tails == [
            [layout_env(engine), "ps", "-a"],
            ["up", "-d", "openclaw-gateway"],
            [layout_env(engine), "stop", "openclaw-gateway"],
            [layout_env(engine), "restart", "openclaw-gateway"],
            ["--rm", "openclaw-cli", "doctor"],
        ]
        assert [e.data["code"] for e in sink.events if e.type == "exit"] == [0] * 5


class TestHealthUrl:
    def test_follows_gateway_port(self, engine):
        assert engine.health_checker({"OPENCLAW_GATEWAY_PORT": "19000"}).url == (
            "http://127.0.0.1:19000/health"
        )


class TestBuildEngine:
    def test_reads_settings(self, layout, monkeypatch):
        monkeypatch.delenv("HEALTH_URL", raising=False)
        engine = build_engine(layout, {
            "docker": {"binary": "podman", "gateway_service": "gw"},
            "gateway": {"health_url": "http://gw:1/health"},
            "install": {"health_attempts": 5, "health_interval": 1, "health_timeout": 2},
            "logs": {"tail": 50},
        })
        assert engine.compose.binary == "podman"
        assert engine.compose.gateway_service == "gw"
        assert engine.health_url == "http://gw:1/health"
        assert engine.health_attempts == 5
        assert engine.logs_tail == 50
        assert engine.runner.cwd == layout.project_dir

    def test_health_url_environment_override(self, layout, monkeypatch):
        monkeypatch.setenv("HEALTH_URL", "http://custom/health")
        assert build_engine(layout).health_url == "http://custom/health"
