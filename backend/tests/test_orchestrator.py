"""Tests for sandbox/orchestrator.py -- validation, primary path and fallback.

The orchestrator is driven with the in-memory substrate and a stub
fallback from conftest.py, so no real sandbox is involved.
"""

import asyncio
import time
from dataclasses import dataclass

import pytest

from models.schemas import ExecutionPath
from sandbox.errors import CommandRejected, SpawnError
from sandbox.local_executor import LocalFallbackExecutor
from sandbox.orchestrator import ExecutionOrchestrator
from sandbox.runtime import SandboxRuntimeClient
from sandbox.types import SandboxPhase


@dataclass
class _Task:
    command: str | None


def _orchestrator(substrate, fallback, **kwargs) -> ExecutionOrchestrator:
    runtime = (
        SandboxRuntimeClient(substrate, poll_interval=0.01)
        if substrate is not None
        else None
    )
    return ExecutionOrchestrator(runtime, fallback, **kwargs)


class TestRejection:
    @pytest.mark.parametrize("cmd", ["rm -rf /", "sudo ls", "", None, "echo $(id)"])
    async def test_unsafe_command_raises(self, fake_substrate, stub_fallback, cmd) -> None:
        orch = _orchestrator(fake_substrate, stub_fallback)
        with pytest.raises(CommandRejected):
            await orch.execute(_Task(cmd))

    async def test_rejection_touches_nothing(self, fake_substrate, stub_fallback) -> None:
        orch = _orchestrator(fake_substrate, stub_fallback)
        with pytest.raises(CommandRejected) as exc_info:
            await orch.execute(_Task("rm -rf /"))
        assert fake_substrate.created == []
        assert stub_fallback.calls == []
        assert exc_info.value.command == "rm -rf /"
        assert str(exc_info.value).startswith("Unsafe command")


class TestSandboxPath:
    async def test_success(self, fake_substrate, stub_fallback) -> None:
        record = await _orchestrator(fake_substrate, stub_fallback).execute(
            _Task("echo hello")
        )
        assert record.output == "hello\n"
        assert record.executed_by == ExecutionPath.SANDBOX
        assert record.end_time >= record.start_time
        assert stub_fallback.calls == []

    async def test_wraps_command_in_shell(self, fake_substrate, stub_fallback) -> None:
        await _orchestrator(fake_substrate, stub_fallback, shell="bash").execute(
            _Task("ls | wc -l")
        )
        (_, argv), = fake_substrate.created
        assert argv == ("bash", "-c", "ls | wc -l")

    async def test_failed_phase_is_still_sandbox_output(
        self, make_substrate, stub_fallback
    ) -> None:
        substrate = make_substrate(phases=[SandboxPhase.FAILED], logs="boom\n")
        record = await _orchestrator(substrate, stub_fallback).execute(_Task("false"))
        assert record.executed_by == ExecutionPath.SANDBOX
        assert record.output == "boom\n"
        assert stub_fallback.calls == []

    async def test_output_truncated(self, make_substrate, stub_fallback) -> None:
        substrate = make_substrate(logs="x" * 200)
        record = await _orchestrator(
            substrate, stub_fallback, max_output_chars=100
        ).execute(_Task("yes"))
        assert record.output.startswith("x" * 100)
        assert "truncated" in record.output


class TestFallback:
    async def test_provision_failure_falls_back(self, make_substrate, stub_fallback) -> None:
        substrate = make_substrate(create_error=RuntimeError("connection refused"))
        record = await _orchestrator(substrate, stub_fallback).execute(_Task("echo hi"))
        assert record.executed_by == ExecutionPath.LOCAL_FALLBACK
        assert record.output == "local\n"
        assert len(stub_fallback.calls) == 1
        assert stub_fallback.calls[0].argv == ("sh", "-c", "echo hi")

    async def test_timeout_falls_back_once(self, make_substrate, stub_fallback) -> None:
        substrate = make_substrate(phases=[SandboxPhase.RUNNING])
        record = await _orchestrator(substrate, stub_fallback, timeout=0.05).execute(
            _Task("sleep 100")
        )
        assert record.executed_by == ExecutionPath.LOCAL_FALLBACK
        assert len(stub_fallback.calls) == 1
        assert len(substrate.deleted) == 1

    async def test_retrieval_failure_falls_back(self, make_substrate, stub_fallback) -> None:
        substrate = make_substrate(logs_error=ConnectionError("gone"))
        record = await _orchestrator(substrate, stub_fallback).execute(_Task("echo hi"))
        assert record.executed_by == ExecutionPath.LOCAL_FALLBACK

    async def test_no_substrate_uses_fallback(self, stub_fallback) -> None:
        record = await _orchestrator(None, stub_fallback).execute(_Task("echo hi"))
        assert record.executed_by == ExecutionPath.LOCAL_FALLBACK
        assert record.output == "local\n"

    async def test_real_local_fallback(self, make_substrate) -> None:
        substrate = make_substrate(create_error=RuntimeError("no cluster"))
        record = await _orchestrator(substrate, LocalFallbackExecutor()).execute(
            _Task("echo Hello World!")
        )
        assert record.output == "Hello World!\n"
        assert record.executed_by == ExecutionPath.LOCAL_FALLBACK


class TestHardFailure:
    async def test_both_paths_fail(self, make_substrate, failing_fallback) -> None:
        substrate = make_substrate(create_error=RuntimeError("no cluster"))
        record = await _orchestrator(substrate, failing_fallback).execute(_Task("echo hi"))
        assert record.executed_by == ExecutionPath.NONE
        assert record.failed is True
        assert record.output.startswith("Error:")
        assert "Failed to start" in record.output
        assert record.end_time >= record.start_time
        assert len(failing_fallback.calls) == 1

    async def test_unexpected_fallback_error(self, make_substrate, make_fallback) -> None:
        substrate = make_substrate(create_error=RuntimeError("no cluster"))
        fallback = make_fallback(error=ValueError("weird"))
        record = await _orchestrator(substrate, fallback).execute(_Task("echo hi"))
        assert record.executed_by == ExecutionPath.NONE
        assert "weird" in record.output

    async def test_fallback_disabled(self, make_substrate) -> None:
        substrate = make_substrate(create_error=RuntimeError("no cluster"))
        record = await _orchestrator(substrate, None).execute(_Task("echo hi"))
        assert record.executed_by == ExecutionPath.NONE
        assert "fallback is disabled" in record.output
        assert "no cluster" in record.output

    async def test_spawn_error_message_in_output(self, make_substrate, make_fallback) -> None:
        substrate = make_substrate(create_error=RuntimeError("down"))
        fallback = make_fallback(error=SpawnError("Local process did not exit within 1 seconds"))
        record = await _orchestrator(substrate, fallback).execute(_Task("sleep 5"))
        assert record.output == "Error: Local process did not exit within 1 seconds"


class TestConcurrency:
    async def test_parallel_executions_are_independent(self, fake_substrate, stub_fallback) -> None:
        orch = _orchestrator(fake_substrate, stub_fallback)
        records = await asyncio.gather(
            *(orch.execute(_Task(f"echo {i}")) for i in range(20))
        )
        assert all(r.executed_by == ExecutionPath.SANDBOX for r in records)
        assert len(set(fake_substrate.created_names)) == 20
        assert len(fake_substrate.deleted) == 20


class TestStuckSubstrate:
    async def test_blocked_create_falls_back_within_timeout(
        self, make_substrate, stub_fallback
    ) -> None:
        substrate = make_substrate(create_delay=0.6)
        started = time.monotonic()
        record = await _orchestrator(substrate, stub_fallback, timeout=0.1).execute(
            _Task("echo hi")
        )
        assert time.monotonic() - started < 0.5
        assert record.executed_by == ExecutionPath.LOCAL_FALLBACK
        assert len(stub_fallback.calls) == 1
        for _ in range(200):
            if substrate.deleted:
                break
            await asyncio.sleep(0.01)
        assert substrate.premature_deletes == []
