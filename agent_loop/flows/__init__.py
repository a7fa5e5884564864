"""Reasoning-loop state machine built on LangGraph."""

from agent_loop.flows.orchestrator import Orchestrator

__all__ = ["Orchestrator"]
