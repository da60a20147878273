"""
Automation package for scheduling and running workflow rules.

This package normalizes the schedule vocabularies of workflows, notebook
jobs and data-sync jobs, computes next runs, evaluates workflow conditions
and actions, and resolves scheduled, event and manual triggers.
"""

# Make the core components available at package level
from automation.frequency import (
    CanonicalFrequency, ScheduleFamily, FrequencyMapping,
    normalize, is_canonical
)
from automation.models import (
    Workflow, Condition, Action, ScheduleSpec, ScheduleState,
    FrequencyParams, EventSubscription, RetryPolicy, ScheduledJob,
    TriggerType, WorkflowStatus, ScheduleStatus, ConditionOperator,
    LogicalConnector, ActionKind
)
from automation.next_run import (
    next_run, compute_next_run, initial_schedule_state,
    CronStrategy, UnsupportedCronStrategy
)
from automation.conditions import evaluate_conditions, ConditionEvaluator, ConditionEvaluation
from automation.actions import execute_actions, ActionExecutor, ActionResult
from automation.resolver import (
    TriggerResolver, TriggerSignal, TriggerOutcome,
    SignalKind, OutcomeStatus, RunState
)
from automation.events import DataSyncCompleted, EventBus
from automation.scheduler import Scheduler
from automation.schedule_view import build_schedule_view, upcoming_runs, export_schedule_view, ScheduleViewEntry
