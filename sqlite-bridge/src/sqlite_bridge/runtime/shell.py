"""Async process executor shared by the simctl and adb wrappers.

Commands are always argument vectors (``asyncio.create_subprocess_exec``);
nothing is handed to a host shell. On timeout the child is killed and reaped,
so an expired call does not leave work running behind it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from sqlite_bridge.errors import ShellError

logger = logging.getLogger(__name__)

MAX_BUFFER_BYTES = 10 * 1024 * 1024  # large schema dumps / find listings
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_RETRY_DELAY_S = 1.0

_READ_CHUNK = 64 * 1024


class OutputLimitExceeded(RuntimeError):
    pass


@dataclass(frozen=True)
class ShellResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: Optional[int]
    timed_out: bool = False

    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0


def _label_for(argv: Sequence[str]) -> str:
    return " ".join(str(a) for a in argv)[:60]


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


class ProcessExecutor:
    """Run external commands with timeout, bounded retry and backoff."""

    def __init__(
        self,
        *,
        max_buffer_bytes: int = MAX_BUFFER_BYTES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_buffer_bytes = int(max_buffer_bytes)
        self._sleep = sleep

    async def _read_capped(self, stream: asyncio.StreamReader) -> bytes:
        buf = bytearray()
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return bytes(buf)
            buf.extend(chunk)
            if len(buf) > self._max_buffer_bytes:
                raise OutputLimitExceeded(
                    f"stdout exceeded {self._max_buffer_bytes} bytes"
                )

    async def run_result(self, argv: Sequence[str], *, timeout_s: float) -> ShellResult:
        """Run ``argv`` once.

        Raises ``OSError`` when the executable cannot be spawned and
        ``OutputLimitExceeded`` when stdout grows past the buffer cap (the
        process is killed in both the overflow and timeout cases).
        """

        args = [str(a) for a in argv]
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert proc.stdout is not None and proc.stderr is not None

        async def _collect() -> tuple[bytes, bytes]:
            out, err = await asyncio.gather(
                self._read_capped(proc.stdout), proc.stderr.read()
            )
            await proc.wait()
            return out, err

        try:
            out, err = await asyncio.wait_for(_collect(), timeout=float(timeout_s))
        except asyncio.TimeoutError:
            await _kill(proc)
            return ShellResult(args=args, stdout="", stderr="", returncode=None, timed_out=True)
        except OutputLimitExceeded:
            await _kill(proc)
            raise

        return ShellResult(
            args=args,
            stdout=out.decode("utf-8", errors="replace"),
            stderr=err.decode("utf-8", errors="replace"),
            returncode=proc.returncode,
        )

    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = 0,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        ignore_errors: bool = False,
        label: str | None = None,
    ) -> str:
        """Run ``argv`` and return its trimmed stdout.

        With ``ignore_errors`` a final failure yields ``""``; callers treat
        that as "nothing found", not as a clean success.
        """

        tag = label or _label_for(argv)
        detail = "Unknown error"

        for attempt in range(int(retries) + 1):
            if attempt > 0:
                delay = float(retry_delay_s) * (2 ** (attempt - 1))
                logger.debug('Retry %d/%d for "%s" after %.2fs', attempt, retries, tag, delay)
                await self._sleep(delay)

            logger.debug(
                'Executing: "%s"', tag, extra={"meta": {"timeout_s": timeout_s, "attempt": attempt}}
            )

            try:
                res = await self.run_result(argv, timeout_s=timeout_s)
            except OutputLimitExceeded as e:
                detail = str(e)
                logger.debug('Command output too large: "%s"', tag)
                continue
            except OSError as e:
                detail = f"{type(e).__name__}: {e}"
                logger.debug(
                    'Command could not be started: "%s"', tag, extra={"meta": {"error": detail}}
                )
                continue

            if res.timed_out:
                detail = f"timed out after {timeout_s}s"
                logger.warning('Command timed out after %.1fs: "%s"', timeout_s, tag)
                continue
            if res.returncode != 0:
                detail = (res.stderr or "").strip()[:200] or f"exit code {res.returncode}"
                logger.debug(
                    'Command failed: "%s"',
                    tag,
                    extra={"meta": {"code": res.returncode, "stderr": (res.stderr or "")[:200]}},
                )
                continue

            return res.stdout.strip()

        if ignore_errors:
            logger.debug('Ignoring error for "%s"', tag)
            return ""
        raise ShellError(tag, detail)
