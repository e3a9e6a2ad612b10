"""
Provider Adapter Base
=====================

Interface every agentic CLI adapter implements.

An adapter knows its binary, what that binary can do, and how to turn a
generic request (prompt, model, budget, ...) into argv. Features the binary
cannot do are dropped with a one-line warning; they never raise.

Two invocation shapes:
- **session**: the long-running headless run that does the work
- **analysis**: a short blocking call used between iterations
"""

import json
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from loopwarden.output import print_warning

logger = logging.getLogger(__name__)

VERSION_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class ProviderCapabilities:
    stream_json: bool = False       # --output-format stream-json
    session_resume: bool = False    # --session-id
    budget_control: bool = False    # --max-budget-usd
    system_prompt: bool = False     # --append-system-prompt
    agent_mode: bool = False        # --agent
    mcp_config: bool = False        # --mcp-config
    max_turns: bool = False         # --max-turns

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SessionOptions:
    """A main headless session request. model is generic (opus/sonnet/haiku)."""
    prompt: str
    session_id: Optional[str] = None
    model: Optional[str] = None
    budget: Optional[float] = None          # USD per iteration
    max_turns: Optional[int] = None
    verbose: bool = False
    system_prompt: Optional[str] = None
    mcp_config: Optional[dict[str, Any]] = None


@dataclass
class AnalysisOptions:
    """A short analysis call between iterations."""
    prompt: str
    model: Optional[str] = None
    agent: Optional[str] = None
    timeout: Optional[float] = None         # seconds
    extra: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Wraps one agentic coding CLI."""

    @abstractmethod
    def get_binary(self) -> str:
        """CLI executable name."""

    @abstractmethod
    def get_name(self) -> str:
        """Provider name used in config and messages."""

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        ...

    @abstractmethod
    def build_session_args(self, options: SessionOptions) -> list[str]:
        ...

    @abstractmethod
    def build_analysis_args(self, options: AnalysisOptions) -> list[str]:
        ...

    @abstractmethod
    def map_model(self, generic_model: str) -> str:
        ...

    # =========================================================================
    # Shared behavior
    # =========================================================================

    def _run_version(self) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                [self.get_binary(), "--version"],
                capture_output=True,
                text=True,
                timeout=VERSION_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("%s --version failed: %s", self.get_binary(), e)
            return None

    def is_available(self) -> bool:
        """True when ``<binary> --version`` exits 0."""
        result = self._run_version()
        return result is not None and result.returncode == 0

    def get_version(self) -> Optional[str]:
        result = self._run_version()
        if result is None or result.returncode != 0:
            return None
        return result.stdout.strip()

    def parse_output(self, stdout: str) -> Optional[dict]:
        """First JSON object embedded in stdout, or None."""
        decoder = json.JSONDecoder()
        start = stdout.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(stdout, start)
            except ValueError:
                start = stdout.find("{", start + 1)
                continue
            if isinstance(obj, dict):
                return obj
            start = stdout.find("{", start + 1)
        return None

    def get_env_overrides(self) -> dict[str, str]:
        return {}

    def get_transcript_path(self, session_id: str, working_dir: str) -> Optional[str]:
        return None

    def has_capability(self, capability: str) -> bool:
        return bool(getattr(self.get_capabilities(), capability, False))

    def warn_unsupported(self, capability: str, feature: str) -> None:
        """One warning line when the capability is missing; never raises."""
        if not self.has_capability(capability):
            print_warning(f"[{self.get_name()}] Warning: {feature} not supported by this provider, skipping")
