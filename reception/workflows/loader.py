"""Load JSONL intake workflow definitions into IntakeWorkflowDef objects."""

from __future__ import annotations

import json
from pathlib import Path

from reception.workflows.schema import IntakeStateDef, IntakeWorkflowDef

DEFAULT_WORKFLOW_PATH = Path(__file__).resolve().parent / "tradie_intake.jsonl"


def load_workflow_jsonl(path: str | Path = DEFAULT_WORKFLOW_PATH) -> IntakeWorkflowDef:
    """Load a single workflow from a JSONL file.

    The file holds exactly one JSON object; blank lines are ignored and
    states are nested inside its ``states`` dict.
    """
    path = Path(path)
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        return _parse_workflow(json.loads(line))

    raise ValueError(f"No workflow found in {path}")


def _parse_workflow(data: dict) -> IntakeWorkflowDef:
    states: dict[str, IntakeStateDef] = {}
    for state_id, state_data in data.get("states", {}).items():
        state_data.setdefault("id", state_id)
        states[state_id] = IntakeStateDef(**state_data)
    data["states"] = states

    workflow = IntakeWorkflowDef(**data)
    _check_targets(workflow)
    return workflow


def _check_targets(workflow: IntakeWorkflowDef) -> None:
    """Every transition must point at a known state or terminal message."""
    if workflow.initial_state not in workflow.states:
        raise ValueError(f"Unknown initial state {workflow.initial_state!r}")
    for state in workflow.states.values():
        for outcome, target in state.transitions.items():
            head, _, rest = target.partition(":")
            if head == "exit":
                if rest and rest not in workflow.terminal_messages:
                    raise ValueError(
                        f"State {state.id!r} outcome {outcome!r} exits to unknown message {rest!r}"
                    )
            elif head not in workflow.states:
                raise ValueError(
                    f"State {state.id!r} outcome {outcome!r} targets unknown state {head!r}"
                )
