from __future__ import annotations

import asyncio
import sys
import time

import pytest

from sqlite_bridge.errors import ShellError
from sqlite_bridge.runtime.shell import ProcessExecutor


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_run_returns_trimmed_stdout() -> None:
    out = asyncio.run(ProcessExecutor().run(_py("print('  hello  ')")))
    assert out == "hello"


def test_run_result_captures_stderr_and_returncode() -> None:
    res = asyncio.run(
        ProcessExecutor().run_result(
            _py("import sys; sys.stderr.write('boom'); sys.exit(3)"), timeout_s=10.0
        )
    )
    assert res.returncode == 3
    assert res.stderr == "boom"
    assert not res.ok()


def test_failure_raises_shell_error_with_label() -> None:
    with pytest.raises(ShellError) as excinfo:
        asyncio.run(
            ProcessExecutor().run(
                _py("import sys; sys.stderr.write('bad things'); sys.exit(1)"), label="probe"
            )
        )
    assert excinfo.value.label == "probe"
    assert "bad things" in str(excinfo.value)


def test_ignore_errors_returns_empty_string() -> None:
    out = asyncio.run(ProcessExecutor().run(_py("import sys; sys.exit(2)"), ignore_errors=True))
    assert out == ""


def test_retries_use_exponential_backoff() -> None:
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    executor = ProcessExecutor(sleep=fake_sleep)
    with pytest.raises(ShellError):
        asyncio.run(executor.run(_py("import sys; sys.exit(1)"), retries=3, retry_delay_s=0.5))
    assert delays == [0.5, 1.0, 2.0]


def test_retry_succeeds_after_transient_failure(tmp_path) -> None:
    marker = tmp_path / "marker"
    code = (
        "import pathlib, sys\n"
        f"p = pathlib.Path({str(marker)!r})\n"
        "if not p.exists():\n"
        "    p.write_text('x')\n"
        "    sys.exit(1)\n"
        "print('second try')\n"
    )

    async def no_sleep(_delay: float) -> None:
        return None

    out = asyncio.run(ProcessExecutor(sleep=no_sleep).run(_py(code), retries=1))
    assert out == "second try"


def test_timeout_kills_process_promptly() -> None:
    started = time.monotonic()
    with pytest.raises(ShellError) as excinfo:
        asyncio.run(ProcessExecutor().run(_py("import time; time.sleep(30)"), timeout_s=0.3))
    assert time.monotonic() - started < 10.0
    assert "timed out" in str(excinfo.value)


def test_timeout_result_is_flagged() -> None:
    res = asyncio.run(
        ProcessExecutor().run_result(_py("import time; time.sleep(30)"), timeout_s=0.3)
    )
    assert res.timed_out
    assert res.returncode is None


def test_output_over_buffer_cap_fails() -> None:
    executor = ProcessExecutor(max_buffer_bytes=16)
    with pytest.raises(ShellError) as excinfo:
        asyncio.run(executor.run(_py("print('x' * 1000)")))
    assert "exceeded" in str(excinfo.value)


def test_missing_executable_is_a_shell_error() -> None:
    with pytest.raises(ShellError):
        asyncio.run(ProcessExecutor().run(["definitely-not-a-real-binary-4242"]))


def test_arguments_are_not_shell_interpreted() -> None:
    out = asyncio.run(
        ProcessExecutor().run(_py("import sys; print(sys.argv[1])") + ["$(echo pwned); rm -rf /"])
    )
    assert out == "$(echo pwned); rm -rf /"
