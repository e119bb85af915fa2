"""
Workflow Module - Adaptive research orchestration.

Components:
- models.py: WorkItem and the value objects it carries
- quality.py: Evidence quality assessment
- steps.py: Step contract, registry and adapter steps
- router.py: Routing decisions, retry and iteration budgets
- executor.py: Step execution, retries, fan-out and merge
- graph.py / nodes.py / conditions.py: LangGraph wiring and ResearchWorkflow
"""

from .models import (
    Citation,
    OutputFormat,
    ProcessingStep,
    PromptConfig,
    QualityAssessment,
    QueryAnalysis,
    ReasoningMethod,
    ReasoningOutput,
    RoutingSignals,
    RunOutcome,
    StepName,
    UserProfile,
    WorkItem,
)
from .quality import QualityAssessor, QualityWeights, assess_quality
from .steps import Step, StepRegistry, build_default_registry, heuristic_query_analysis
from .router import MAX_RETRIES, MAX_TOTAL_ITERATIONS, Router, RoutingDecision
from .executor import StepExecutor
from .graph import ProgressSnapshot, ResearchWorkflow, build_workflow, create_initial_item

__all__ = [
    # Main workflow class
    "ResearchWorkflow",
    "ProgressSnapshot",
    "build_workflow",
    "create_initial_item",
    # Engine
    "Router",
    "RoutingDecision",
    "StepExecutor",
    "MAX_RETRIES",
    "MAX_TOTAL_ITERATIONS",
    # Steps
    "Step",
    "StepRegistry",
    "build_default_registry",
    "heuristic_query_analysis",
    # Quality
    "QualityAssessor",
    "QualityWeights",
    "assess_quality",
    # Models
    "Citation",
    "OutputFormat",
    "ProcessingStep",
    "PromptConfig",
    "QualityAssessment",
    "QueryAnalysis",
    "ReasoningMethod",
    "ReasoningOutput",
    "RoutingSignals",
    "RunOutcome",
    "StepName",
    "UserProfile",
    "WorkItem",
]
