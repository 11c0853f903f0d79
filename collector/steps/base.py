"""Step and action descriptors.

A Step is a stateless, immutable description of one unit of collection:
- `action`: the primary way to acquire the data
- `fallbacks`: alternate acquisition paths, tried in declared order when the primary fails
- `preconditions`: checked before anything runs; an unmet one skips the step

Actions are a tagged variant so the executor can run and log any of them uniformly:
- Cmdlet(name, args)         -> PowerShell cmdlet via the tool runner
- Executable(path, args)     -> external program via the tool runner
- InProcess(fn)              -> Python callable (usually wrapping a collaborator source)

`{dest}` in Cmdlet/Executable args is replaced with the action's artifact path.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Literal, Optional, Sequence, Tuple, Union

from collector.core.models import ArtifactPath, RunContext

if TYPE_CHECKING:
    from collector.core.activity_log import ActivityLog
    from collector.core.layout import OutputLayout
    from collector.runner.tool_runner import CommandRunner

ActionKind = Literal["cmdlet", "executable", "in_process"]

DEST_PLACEHOLDER = "{dest}"

# `-Name` style tokens are passed bare so PowerShell binds them as parameter names.
_PS_PARAMETER = re.compile(r"^-[A-Za-z][A-Za-z0-9]*:?$")


def ps_quote(value: str) -> str:
    """PowerShell single-quoted literal: no expansion, embedded quotes doubled."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class ArtifactSpec:
    """Where an action's output lands: `<output_root>/<category>/<filename>`."""

    category: str
    filename: str


@dataclass(frozen=True)
class Cmdlet:
    name: str
    args: Tuple[str, ...] = ()
    output: Optional[ArtifactSpec] = None
    kind: ActionKind = field(default="cmdlet", init=False)

    def describe(self) -> str:
        return f"cmdlet:{self.name}"

    def script(self, dest: Optional[str] = None) -> str:
        """PowerShell command text; `{dest}` in args becomes `dest`, and every value is quoted."""
        args = [a.replace(DEST_PLACEHOLDER, dest) if dest is not None else a for a in self.args]
        parts = [self.name, *(a if _PS_PARAMETER.match(a) else ps_quote(a) for a in args)]
        # Stop turns non-terminating cmdlet errors into a non-zero powershell exit code.
        return "$ErrorActionPreference = 'Stop'; " + " ".join(parts) + " | Out-String -Width 4096"


@dataclass(frozen=True)
class Executable:
    path: str
    args: Tuple[str, ...] = ()
    output: Optional[ArtifactSpec] = None
    # True: the tool prints the data and stdout becomes the artifact.
    # False: the tool writes the artifact itself (via a {dest} argument).
    capture_stdout: bool = True
    timeout: Optional[float] = None
    kind: ActionKind = field(default="executable", init=False)

    def describe(self) -> str:
        return f"executable:{self.path}"


@dataclass(frozen=True)
class InProcess:
    fn: Callable[["ActionContext"], Optional[Sequence[ArtifactPath]]]
    label: str
    kind: ActionKind = field(default="in_process", init=False)

    def describe(self) -> str:
        return f"in_process:{self.label}"


Action = Union[Cmdlet, Executable, InProcess]


@dataclass(frozen=True)
class Precondition:
    description: str
    check: Callable[[RunContext], bool]


@dataclass(frozen=True)
class Step:
    step_id: str
    label: str
    action: Action
    fallbacks: Tuple[Action, ...] = ()
    preconditions: Tuple[Precondition, ...] = ()
    mandatory: bool = False

    def chain(self) -> List[Action]:
        return [self.action, *self.fallbacks]


@dataclass
class ActionContext:
    """What an in-process action gets to work with. Artifact paths only come from `layout`."""

    run: RunContext
    layout: "OutputLayout"
    runner: "CommandRunner"
    log: "ActivityLog"
    step: Step

    def artifact(self, category: str, filename: str) -> ArtifactPath:
        artifact = self.layout.path_for(category, filename)
        self.layout.ensure_parent(artifact)
        return artifact

    def write_text(self, category: str, filename: str, body: str) -> ArtifactPath:
        artifact = self.artifact(category, filename)
        Path(artifact.path).write_text(body, encoding="utf-8")
        return artifact


def validate_step_ids(steps: Sequence[Step]) -> None:
    seen = set()
    for s in steps:
        if s.step_id in seen:
            raise ValueError(f"duplicate step id: {s.step_id}")
        seen.add(s.step_id)
