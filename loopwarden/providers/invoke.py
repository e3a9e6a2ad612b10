"""
Provider Invocation
===================

Runs a provider's binary with the argv its adapter builds.

- run_analysis(): short blocking call with a timeout, output parsed as JSON
- stream_session(): long-running session streamed line by line via asyncio

Spawn failures, timeouts, and non-zero exits raise ProviderInvocationError.
Nothing here retries; the loop driver decides what to do next.

Usage:
    from loopwarden.providers import create_provider, AnalysisOptions, SessionOptions
    from loopwarden.providers.invoke import run_analysis, stream_session

    provider = create_provider("claude")
    result = run_analysis(provider, AnalysisOptions(prompt="Summarise progress", timeout=60))

    async for line in stream_session(provider, SessionOptions(prompt="Implement the feature")):
        handle(line)
"""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from loopwarden.providers.base import AnalysisOptions, ProviderAdapter, SessionOptions

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_TIMEOUT = 120      # seconds
STREAM_LINE_LIMIT = 16 * 1024 * 1024


class ProviderInvocationError(Exception):
    """The provider process could not be started, timed out, or failed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class AnalysisResult:
    stdout: str
    stderr: str
    parsed: Optional[dict]


def build_env(provider: ProviderAdapter) -> dict[str, str]:
    """Current environment plus the provider's headless overrides."""
    env = dict(os.environ)
    env.update(provider.get_env_overrides())
    return env


def run_analysis(
    provider: ProviderAdapter,
    options: AnalysisOptions,
    cwd: Optional[Union[str, os.PathLike]] = None,
) -> AnalysisResult:
    """
    Run a short analysis call and wait for it.

    Raises:
        ProviderInvocationError: On spawn failure, timeout, or non-zero exit
    """
    argv = [provider.get_binary(), *provider.build_analysis_args(options)]
    timeout = options.timeout or DEFAULT_ANALYSIS_TIMEOUT
    logger.debug("Running analysis: %s (timeout %ss)", argv[:-1], timeout)

    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=build_env(provider),
        )
    except subprocess.TimeoutExpired as e:
        raise ProviderInvocationError(
            f"{provider.get_name()} analysis timed out after {timeout}s"
        ) from e
    except OSError as e:
        raise ProviderInvocationError(f"Failed to start {provider.get_binary()}: {e}") from e

    if result.returncode != 0:
        raise ProviderInvocationError(
            f"{provider.get_name()} analysis exited with code {result.returncode}",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    return AnalysisResult(
        stdout=result.stdout,
        stderr=result.stderr,
        parsed=provider.parse_output(result.stdout),
    )


async def stream_session(
    provider: ProviderAdapter,
    options: SessionOptions,
    cwd: Optional[Union[str, os.PathLike]] = None,
) -> AsyncIterator[str]:
    """
    Start a main session and yield its stdout lines as they arrive.

    Raises:
        ProviderInvocationError: On spawn failure or non-zero exit
    """
    argv = [provider.get_binary(), *provider.build_session_args(options)]
    logger.debug("Starting session: %s", argv[:-1])

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=build_env(provider),
            limit=STREAM_LINE_LIMIT,
        )
    except OSError as e:
        raise ProviderInvocationError(f"Failed to start {provider.get_binary()}: {e}") from e

    # Read stderr concurrently with stdout
    stderr_task = asyncio.create_task(proc.stderr.read())
    try:
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            yield line.decode("utf-8", errors="replace").rstrip("\r\n")
        returncode = await proc.wait()
        stderr = (await stderr_task).decode("utf-8", errors="replace")
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        if not stderr_task.done():
            stderr_task.cancel()

    if returncode != 0:
        raise ProviderInvocationError(
            f"{provider.get_name()} session exited with code {returncode}",
            returncode=returncode,
            stderr=stderr,
        )
