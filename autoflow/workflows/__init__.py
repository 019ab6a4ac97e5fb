"""autoflow.workflows: Graph model, validation, conditions, and version management."""

from .conditions import ConditionEvaluator, predicate, supported_predicates
from .editor import from_editor_payload, load_workflow_file
from .graph import CompiledGraph, compile_graph
from .manager import WorkflowManager
from .validator import WorkflowValidator

__all__ = [
    "CompiledGraph",
    "ConditionEvaluator",
    "WorkflowManager",
    "WorkflowValidator",
    "compile_graph",
    "from_editor_payload",
    "load_workflow_file",
    "predicate",
    "supported_predicates",
]
