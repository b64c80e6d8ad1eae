"""Built-in agent capabilities and the default registry."""

from agent_orchestrator.agents.builder import build_default_registry
from agent_orchestrator.agents.context import AgentContext

__all__ = ["AgentContext", "build_default_registry"]
