"""
Codex CLI adapter.

Codex has none of the optional capabilities. The system prompt is folded
into the main prompt; budget, max turns, session id, and MCP config are
dropped with a warning.
"""

from typing import Optional

from loopwarden.providers.base import (
    AnalysisOptions,
    ProviderAdapter,
    ProviderCapabilities,
    SessionOptions,
)

CODEX_MODEL_MAP = {
    "opus": "gpt-5.3-codex",
    "sonnet": "codex-mini-latest",
    "haiku": "gpt-5-codex-mini",
}


class CodexAdapter(ProviderAdapter):

    def get_binary(self) -> str:
        return "codex"

    def get_name(self) -> str:
        return "codex"

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities()

    def build_session_args(self, options: SessionOptions) -> list[str]:
        args = ["exec", "--full-auto"]
        if options.model:
            args += ["--model", self.map_model(options.model)]

        if options.budget is not None:
            self.warn_unsupported("budget_control", "Budget control (--max-budget-usd)")
        if options.max_turns is not None:
            self.warn_unsupported("max_turns", "Max turns limit")
        if options.session_id:
            self.warn_unsupported("session_resume", "Session ID tracking")
        if options.mcp_config is not None:
            self.warn_unsupported("mcp_config", "MCP configuration")

        args.append(self._fold_system_prompt(options.prompt, options.system_prompt))
        return args

    def build_analysis_args(self, options: AnalysisOptions) -> list[str]:
        # --agent has no codex equivalent and is dropped without a warning
        args = ["exec", "--full-auto", "--quiet"]
        if options.model:
            args += ["--model", self.map_model(options.model)]
        args.append(options.prompt)
        return args

    def map_model(self, generic_model: str) -> str:
        return CODEX_MODEL_MAP.get(generic_model.lower(), generic_model)

    def get_env_overrides(self) -> dict[str, str]:
        return {"CI": "true"}

    @staticmethod
    def _fold_system_prompt(prompt: str, system_prompt: Optional[str]) -> str:
        if not system_prompt:
            return prompt
        return f"[System Context]\n{system_prompt}\n\n{prompt}"
