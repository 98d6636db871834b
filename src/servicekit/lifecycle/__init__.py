"""Service lifecycle orchestration."""

from servicekit.lifecycle.orchestrator import LifecycleState, Orchestrator

__all__ = ["LifecycleState", "Orchestrator"]
