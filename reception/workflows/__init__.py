"""Intake dialogue workflow definitions."""

from .loader import DEFAULT_WORKFLOW_PATH, load_workflow_jsonl
from .schema import IntakeStateDef, IntakeWorkflowDef

__all__ = ["DEFAULT_WORKFLOW_PATH", "IntakeStateDef", "IntakeWorkflowDef", "load_workflow_jsonl"]
