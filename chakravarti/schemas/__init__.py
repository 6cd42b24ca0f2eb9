"""
chakravarti.schemas - Schema definitions for the orchestration engine.

This module defines the core data structures for chakravarti:

Spec -> Plan (Steps) -> Attempt (StepExecutionResults, Verdict) -> Job

Lifecycle:
1. Spec: Declarative change request (goal, constraints, acceptance criteria)
2. Plan: Immutable DAG of Steps produced by a planner for one planning round
3. Attempt: One execution of a Plan, with per-step results and a terminal result
4. Job: Owns the Spec, the JobConfig, the Attempt history and the RunState
5. JobEvent: Append-only projection of Job changes for observers
"""

from .spec import (
    Spec,
    VerifyConfig,
    SPEC_ID_PATTERN,
)
from .step import (
    Step,
    StepKind,
    StepStatus,
    STEP_TRANSITIONS,
    ExecutionStatus,
    StepExecutionResult,
)
from .plan import (
    Plan,
    PlanContext,
    Feedback,
    FailedStepFeedback,
)
from .verdict import (
    Verdict,
    CriterionResult,
)
from .attempt import (
    Attempt,
    AttemptResult,
    AttemptStatus,
)
from .job import (
    Job,
    JobConfig,
    ModelTask,
    OptimizeMode,
    RunState,
    RUN_STATE_TRANSITIONS,
)
from .events import (
    EventType,
    JobEvent,
)

__all__ = [
    # Spec
    "Spec",
    "VerifyConfig",
    "SPEC_ID_PATTERN",
    # Step
    "Step",
    "StepKind",
    "StepStatus",
    "STEP_TRANSITIONS",
    "ExecutionStatus",
    "StepExecutionResult",
    # Plan
    "Plan",
    "PlanContext",
    "Feedback",
    "FailedStepFeedback",
    # Verdict
    "Verdict",
    "CriterionResult",
    # Attempt
    "Attempt",
    "AttemptResult",
    "AttemptStatus",
    # Job
    "Job",
    "JobConfig",
    "ModelTask",
    "OptimizeMode",
    "RunState",
    "RUN_STATE_TRANSITIONS",
    # Events
    "EventType",
    "JobEvent",
]
