"""
Claude CLI adapter. Supports every capability.
"""

import json
import os
import re

from loopwarden.platform_utils import get_home_dir
from loopwarden.providers.base import (
    AnalysisOptions,
    ProviderAdapter,
    ProviderCapabilities,
    SessionOptions,
)

CLAUDE_CAPABILITIES = ProviderCapabilities(
    stream_json=True,
    session_resume=True,
    budget_control=True,
    system_prompt=True,
    agent_mode=True,
    mcp_config=True,
    max_turns=True,
)


class ClaudeAdapter(ProviderAdapter):

    def get_binary(self) -> str:
        return "claude"

    def get_name(self) -> str:
        return "claude"

    def get_capabilities(self) -> ProviderCapabilities:
        return CLAUDE_CAPABILITIES

    def build_session_args(self, options: SessionOptions) -> list[str]:
        args = [
            "--dangerously-skip-permissions",
            "--print",
            "--output-format", "stream-json",
        ]
        if options.session_id:
            args += ["--session-id", options.session_id]
        if options.model:
            args += ["--model", self.map_model(options.model)]
        if options.budget is not None:
            args += ["--max-budget-usd", str(options.budget)]
        if options.max_turns is not None:
            args += ["--max-turns", str(options.max_turns)]
        if options.verbose:
            args.append("--verbose")
        if options.mcp_config:
            args += ["--mcp-config", json.dumps(options.mcp_config)]
        if options.system_prompt:
            args += ["--append-system-prompt", options.system_prompt]
        args.append(options.prompt)
        return args

    def build_analysis_args(self, options: AnalysisOptions) -> list[str]:
        args = ["--dangerously-skip-permissions", "--print", "--output-format", "json"]
        if options.model:
            args += ["--model", self.map_model(options.model)]
        if options.agent:
            args += ["--agent", options.agent]
        args.append(options.prompt)
        return args

    def map_model(self, generic_model: str) -> str:
        # The claude CLI accepts opus/sonnet/haiku directly
        return generic_model

    def get_env_overrides(self) -> dict[str, str]:
        return {"CI": "true"}

    def get_transcript_path(self, session_id: str, working_dir: str) -> str:
        """~/.claude/projects/<working dir with separators as ->/<session>.jsonl"""
        project_key = re.sub(r"[\\/:]", "-", working_dir)
        return os.path.join(str(get_home_dir()), ".claude", "projects", project_key, f"{session_id}.jsonl")
