"""Pipeline agent registration and environment-driven selection."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from ci_fanout.orchestration.agent import PipelineAgent
from ci_fanout.orchestration.agent_adapters.buildkite import BUILDKITE_BINARY, BuildkiteAgent
from ci_fanout.orchestration.agent_adapters.local import LocalAgent


def registered_agents(env: dict[str, str] | None = None) -> dict[str, PipelineAgent]:
    env_map = os.environ if env is None else env
    env_file = (env_map.get("BUILDKITE_ENV_FILE") or "").strip()
    agents: dict[str, PipelineAgent] = {
        BuildkiteAgent.name: BuildkiteAgent(env_file=Path(env_file) if env_file else None),
        LocalAgent.name: LocalAgent(),
    }
    return dict(sorted(agents.items(), key=lambda kv: kv[0]))


def build_agent(name: str = "", env: dict[str, str] | None = None) -> PipelineAgent:
    agents = registered_agents(env)
    configured = name.strip().lower()
    if configured:
        if configured not in agents:
            raise ValueError(f"unknown agent: {configured}")
        return agents[configured]
    if shutil.which(BUILDKITE_BINARY):
        return agents[BuildkiteAgent.name]
    return agents[LocalAgent.name]


__all__ = ["BuildkiteAgent", "LocalAgent", "build_agent", "registered_agents"]
