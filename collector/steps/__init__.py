"""Collection steps.

Contract:
- steps are immutable descriptors (primary action, ordered fallbacks, preconditions)
- the executor never lets an action's failure escape its step
"""

from .base import Action, ActionContext, ArtifactSpec, Cmdlet, Executable, InProcess, Precondition, Step
from .executor import StepExecutor

__all__ = [
    "Action",
    "ActionContext",
    "ArtifactSpec",
    "Cmdlet",
    "Executable",
    "InProcess",
    "Precondition",
    "Step",
    "StepExecutor",
]
