from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from relay_loop.services import SessionServices
from relay_loop.session import Session


@dataclass(frozen=True)
class AgentProfile:
    system_prompt: str
    tool_names: list[str] = field(default_factory=list)
    model: str | None = None
    max_turns: int = 15


class SpawnAgentTool:
    """Runs a registered sub-agent profile as a child session and reports its outcome."""

    def __init__(self, services: SessionServices, profiles: dict[str, AgentProfile] | None = None):
        self._services = services
        self._profiles: dict[str, AgentProfile] = dict(profiles or {})

    def register(self, name: str, profile: AgentProfile) -> SpawnAgentTool:
        self._profiles[name] = profile
        return self

    def available_agents(self) -> list[str]:
        return list(self._profiles)

    @property
    def name(self) -> str:
        return "spawn_agent"

    @property
    def description(self) -> str:
        agents = ", ".join(self._profiles) or "none registered"
        return (
            "Spawn a sub-agent to handle a specialized subtask. The sub-agent runs to completion "
            "and returns its result. Use this when a task needs a different specialization or "
            f"toolset. Available agents: {agents}."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "agent_name": {
                    "type": "string",
                    "description": "Name of the sub-agent to spawn (from the available agents)",
                },
                "task": {
                    "type": "string",
                    "description": "The task or instruction for the sub-agent",
                },
                "context": {
                    "type": "string",
                    "description": "Additional context or data the sub-agent needs",
                },
            },
            "required": ["agent_name", "task"],
        }

    async def execute(self, tool_input: dict[str, Any]) -> dict[str, Any]:
        agent_name = tool_input.get("agent_name", "")
        task = tool_input.get("task", "")
        context = tool_input.get("context") or ""

        profile = self._profiles.get(agent_name)
        if profile is None:
            available = ", ".join(self._profiles)
            return {"error": f"Unknown sub-agent '{agent_name}'. Available: {available}"}

        session = Session(
            f"sub:{agent_name}",
            services=self._services,
            system_prompt=profile.system_prompt,
            tools=profile.tool_names,
            context={"parent_context": context} if context else None,
            config=self._services.default_config.with_overrides(
                max_turns=profile.max_turns,
                model=profile.model,
            ),
        )

        try:
            result = await session.start(task)
        except Exception as ex:
            logger.warning(f"Sub-agent {agent_name} failed: {ex}")
            return {"agent": agent_name, "status": "failed", "error": str(ex) or type(ex).__name__}

        return {
            "agent": agent_name,
            "status": result.status.value,
            "output": result.final_message,
            "turns_used": result.total_turns,
            "cost_usd": round(result.estimated_cost_usd, 6),
        }
