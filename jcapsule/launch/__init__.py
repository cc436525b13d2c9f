"""
Launch orchestration: session state, planning and the child process.
"""

from .engine import LaunchEngine
from .plan import LaunchPlan
from .planner import LaunchPlanner, PlanDraft, PlanStage, default_stages
from .process import ChildProcess, install_cleanup_handlers, stream_copier
from .session import LaunchOptions, LaunchSession

__all__ = [
    "ChildProcess",
    "LaunchEngine",
    "LaunchOptions",
    "LaunchPlan",
    "LaunchPlanner",
    "LaunchSession",
    "PlanDraft",
    "PlanStage",
    "default_stages",
    "install_cleanup_handlers",
    "stream_copier",
]
