"""Engine — planner, executor and reporter.

    manifest → build_plan → Plan → Executor.execute → records → summarize
"""

from converge.core.engine.executor import Executor, generate_operation_id
from converge.core.engine.planner import build_plan, validate_manifest
from converge.core.engine.reporter import Summary, format_record, summarize

__all__ = [
    "Executor",
    "Summary",
    "build_plan",
    "format_record",
    "generate_operation_id",
    "summarize",
    "validate_manifest",
]
