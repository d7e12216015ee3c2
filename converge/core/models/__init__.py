"""
Domain models — Pydantic types for the reconciliation engine.

All models are re-exported here for convenient access:

    from converge.core.models import Manifest, ResourceDeclaration, Action, Plan
"""

from converge.core.models.action import Action, Plan, Receipt, Verb
from converge.core.models.record import ExecutionRecord, Outcome, ProbeResult
from converge.core.models.resource import (
    Manifest,
    ResourceDeclaration,
    make_resource_id,
    split_resource_id,
)
from converge.core.models.state import ResourceState, RunRecord, RunState

__all__ = [
    # action.py
    "Action",
    # record.py
    "ExecutionRecord",
    # resource.py
    "Manifest",
    "Outcome",
    "Plan",
    "ProbeResult",
    "Receipt",
    "ResourceDeclaration",
    # state.py
    "ResourceState",
    "RunRecord",
    "RunState",
    "Verb",
    "make_resource_id",
    "split_resource_id",
]
