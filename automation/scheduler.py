"""
Scheduler for workflow automations.

A single background thread polls for due SCHEDULED workflows every
``scheduler.check_interval`` seconds and dispatches them to a worker pool.
Data-sync completion events and manual invocations are dispatched through
the same trigger resolver, so per-automation locking applies to all three.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional

from automation.events import DataSyncCompleted, EventBus
from automation.models import ScheduleState, ScheduleStatus, TriggerType, Workflow
from automation.next_run import compute_next_run, initial_schedule_state
from automation.resolver import TriggerOutcome, TriggerResolver, TriggerSignal
from automation.stores import WorkflowRepository
from config import config
from errors import AutomationError, ErrorCode
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Dispatches trigger signals for workflows.

    The polling loop, event dispatch and manual execution all go through
    ``TriggerResolver.resolve_trigger``.
    """

    def __init__(
        self,
        workflow_repository: WorkflowRepository,
        resolver: TriggerResolver,
        event_bus: Optional[EventBus] = None,
        check_interval: Optional[float] = None,
        max_workers: Optional[int] = None
    ):
        """
        Initialize the scheduler.

        Args:
            workflow_repository: Source of workflow definitions
            resolver: Trigger resolver that runs workflows
            event_bus: Optional bus to receive data-sync completion events from
            check_interval: Seconds between polls (defaults to config)
            max_workers: Worker pool size (defaults to config)
        """
        self.workflow_repository = workflow_repository
        self.resolver = resolver
        self.check_interval = check_interval if check_interval is not None else config.scheduler.check_interval
        self.max_workers = max_workers or config.scheduler.max_workers

        self.executor: Optional[ThreadPoolExecutor] = None
        self._ensure_executor()

        # Flag to indicate if the scheduler is running
        self.scheduler_running = False
        self.scheduler_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._unsubscribe = event_bus.subscribe(self.on_data_sync_completed) if event_bus else None

        logger.info(f"Scheduler initialized with {self.max_workers} worker(s)")

    @property
    def schedule_store(self):
        return self.resolver.schedule_store

    def start(self) -> None:
        """Start the background polling thread."""
        if self.scheduler_running:
            logger.warning("Automation scheduler is already running")
            return

        self.scheduler_running = True
        self._stop_event.clear()
        self._ensure_executor()

        self.scheduler_thread = threading.Thread(
            target=self._scheduler_loop,
            daemon=True,
            name="AutomationSchedulerThread"
        )
        self.scheduler_thread.start()

        logger.info(f"Automation scheduler started with check interval of {self.check_interval} seconds")

    def stop(self, wait: bool = True) -> None:
        """
        Stop the polling thread and the worker pool.

        Runs already evaluating are allowed to complete when wait is True.
        A later start() creates a fresh worker pool; the event bus
        subscription is not restored.
        """
        if self.scheduler_running:
            logger.info("Stopping automation scheduler...")
            self.scheduler_running = False
            self._stop_event.set()
            if self.scheduler_thread and self.scheduler_thread.is_alive():
                self.scheduler_thread.join(timeout=5.0)

        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        if self.executor is not None:
            self.executor.shutdown(wait=wait)
            self.executor = None
        logger.info("Automation scheduler stopped")

    def _scheduler_loop(self) -> None:
        """Poll for due automations until stopped."""
        while self.scheduler_running:
            try:
                self.dispatch_due()
            except Exception as e:
                # Keep polling after errors
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)
            self._stop_event.wait(self.check_interval)

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self.executor is None:
            self.executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="AutomationWorker")
        return self.executor

    def _is_candidate(self, workflow: Workflow, now: datetime) -> bool:
        """Cheap pre-check so only plausibly due workflows reach the pool."""
        if workflow.trigger_type != TriggerType.SCHEDULED:
            return False
        state = self.schedule_store.load_schedule_state(workflow.id)
        # Workflows without state get it created by the resolver
        return state is None or state.is_due(now)

    def _scheduled_candidates(self, workflows: List[Workflow], now: datetime) -> List[Workflow]:
        """
        Select the SCHEDULED workflows worth resolving at now.

        Stores that can answer due queries in bulk are asked once; other
        stores are checked workflow by workflow.
        """
        scheduled = [w for w in workflows if w.trigger_type == TriggerType.SCHEDULED]
        store = self.schedule_store
        if hasattr(store, "list_due_ids") and hasattr(store, "list_entity_ids"):
            due_ids = set(store.list_due_ids(now))
            known_ids = set(store.list_entity_ids())
            return [w for w in scheduled if w.id in due_ids or w.id not in known_ids]

        candidates = []
        for workflow in scheduled:
            try:
                if self._is_candidate(workflow, now):
                    candidates.append(workflow)
            except Exception as e:
                logger.error(f"Could not check schedule of {workflow.id}: {e}")
        return candidates

    def dispatch_due(self, now: Optional[datetime] = None) -> List[Future]:
        """
        Submit every due SCHEDULED workflow to the worker pool.

        Returns:
            Futures resolving to TriggerOutcome
        """
        now = now or utc_now()
        executor = self._ensure_executor()
        futures = []
        for workflow in self._scheduled_candidates(self.workflow_repository.list_workflows(), now):
            futures.append(executor.submit(self.resolver.resolve_trigger, workflow, TriggerSignal.tick(now)))

        if futures:
            logger.info(f"Dispatched {len(futures)} scheduled automation(s)")
        return futures

    def tick(self, now: Optional[datetime] = None) -> List[TriggerOutcome]:
        """Dispatch due workflows and wait for their outcomes."""
        return [future.result() for future in self.dispatch_due(now)]

    def on_data_sync_completed(self, event: DataSyncCompleted) -> List[TriggerOutcome]:
        """
        Run every EVENT_BASED workflow subscribed to the event's source.

        Args:
            event: The completion event

        Returns:
            Outcomes of the workflows that were dispatched
        """
        signal = TriggerSignal.from_event(event)
        executor = self._ensure_executor()
        futures = []
        for workflow in self.workflow_repository.list_workflows():
            subscription = workflow.event_subscription
            if workflow.trigger_type != TriggerType.EVENT_BASED or subscription is None:
                continue
            if not subscription.matches_source(event.source_type, event.source_id):
                continue
            futures.append(executor.submit(self.resolver.resolve_trigger, workflow, signal))

        logger.info(
            f"{event.source_type} {event.source_id} completed "
            f"({'success' if event.succeeded else 'failure'}), dispatched {len(futures)} workflow(s)"
        )
        return [future.result() for future in futures]

    def _get_workflow(self, workflow_id: str) -> Workflow:
        workflow = self.workflow_repository.get_workflow(workflow_id)
        if workflow is None:
            raise AutomationError(f"Workflow {workflow_id} not found", ErrorCode.WORKFLOW_NOT_FOUND)
        return workflow

    def execute_now(
        self,
        workflow_id: str,
        record_ids: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> TriggerOutcome:
        """
        Run a workflow immediately, bypassing its due time.

        Args:
            workflow_id: Workflow to run
            record_ids: Target records (all records of the data model if None)
            now: Run instant (defaults to the current time)

        Returns:
            The trigger outcome

        Raises:
            AutomationError: If the workflow does not exist
        """
        workflow = self._get_workflow(workflow_id)
        return self.resolver.resolve_trigger(workflow, TriggerSignal.manual(now, record_ids))

    def pause(self, workflow_id: str) -> bool:
        """
        Pause a workflow's schedule.

        Returns:
            True if the workflow was paused, False if not found

        Raises:
            ConcurrentRunConflict: If a run of the workflow is in flight
        """
        workflow = self.workflow_repository.get_workflow(workflow_id)
        if workflow is None:
            return False

        # Schedule state has a single writer: whoever holds the run lock
        with self.resolver.lock_registry.hold(workflow_id):
            state = self.schedule_store.load_schedule_state(workflow_id) or ScheduleState()
            if state.status == ScheduleStatus.PAUSED:
                return True

            state.status = ScheduleStatus.PAUSED
            self.schedule_store.save_schedule_state(workflow_id, state)

        logger.info(f"Paused automation: {workflow_id}")
        return True

    def resume(self, workflow_id: str, now: Optional[datetime] = None) -> Optional[ScheduleState]:
        """
        Resume a paused workflow.

        A next run that was missed while paused is recomputed from now.

        Returns:
            The updated schedule state, or None if the workflow is not found

        Raises:
            ConcurrentRunConflict: If a run of the workflow is in flight
        """
        workflow = self.workflow_repository.get_workflow(workflow_id)
        if workflow is None:
            return None

        now = now or utc_now()
        with self.resolver.lock_registry.hold(workflow_id):
            state = self.schedule_store.load_schedule_state(workflow_id) or ScheduleState()
            state.status = ScheduleStatus.ACTIVE
            state.enabled = True

            if workflow.trigger_type == TriggerType.SCHEDULED:
                cron_strategy = self.resolver.cron_strategy
                if state.next_run_at is None and state.run_count == 0:
                    state.next_run_at = initial_schedule_state(workflow.schedule, now, cron_strategy).next_run_at
                elif state.is_due(now):
                    state.next_run_at = compute_next_run(
                        workflow.schedule, now, last_run_at=state.last_run_at, cron_strategy=cron_strategy
                    )

            self.schedule_store.save_schedule_state(workflow_id, state)

        logger.info(f"Resumed automation: {workflow_id}, next run {state.next_run_at}")
        return state
