"""Transfer orchestration.

The ``TransferManager`` moves workflows from a source to a target n8n
instance. Each workflow runs through validation, deduplication and a
retried network write under bounded parallelism:

    pending -> validating -> transferring -> completed | skipped | failed

plus ``cancelled`` for workflows never dispatched once cancellation was
requested. Workers pull from an ``asyncio.Queue``; every terminal state is
handed to a single collector task which owns the result list.
"""

import asyncio
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from n8n_transfer.config import TransferFilters, TransferOptions, TransferSettings, get_settings
from n8n_transfer.core.cancellation import CancellationToken, SignalHandlers
from n8n_transfer.core.client import WorkflowClient
from n8n_transfer.core.errors import (
    ErrorCode,
    TransferConfigurationError,
    TransferError,
    classify_error,
)
from n8n_transfer.core.models import (
    TransferState,
    TransferStatus,
    TransferSummary,
    has_credentials,
    tag_names,
    utcnow,
    workflow_name,
)
from n8n_transfer.core.retry import RetryPolicy, retry_async
from n8n_transfer.observability.logging import LogContext, get_logger, workflow_scope
from n8n_transfer.plugins.base import (
    BasePlugin,
    DeduplicatorPlugin,
    PluginKind,
    ReporterPlugin,
    ValidationResult,
    ValidatorPlugin,
)
from n8n_transfer.plugins.loaders import load_plugins
from n8n_transfer.plugins.registry import PluginRegistry, get_registry

logger = get_logger(__name__)

ReportSink = Callable[[str, str], None]


# ============================================================================
# Run bookkeeping
# ============================================================================

@dataclass
class TransferProgress:
    """Live counters of the current or last run."""
    status: str = "idle"
    total: int = 0
    processed: int = 0
    transferred: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    run_id: Optional[str] = None

    def record(self, state: TransferState) -> None:
        self.processed += 1
        if state.status is TransferStatus.COMPLETED:
            self.transferred += 1
        elif state.status is TransferStatus.SKIPPED:
            self.skipped += 1
        elif state.status is TransferStatus.FAILED:
            self.failed += 1
        elif state.status is TransferStatus.CANCELLED:
            self.cancelled += 1


@dataclass
class RunPlugins:
    """Plugins resolved for one run."""
    validators: List[ValidatorPlugin] = field(default_factory=list)
    deduplicators: List[DeduplicatorPlugin] = field(default_factory=list)
    reporters: List[ReporterPlugin] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [p.name for p in (*self.validators, *self.deduplicators, *self.reporters)]


@dataclass
class ValidationIssue:
    workflow: str
    workflow_id: Optional[str]
    errors: List[str]
    warnings: List[str]


@dataclass
class ValidationReport:
    """Result of a validation-only pass over source workflows."""
    total: int
    valid: int
    invalid: int
    errors: int
    warnings: int
    issues: List[ValidationIssue] = field(default_factory=list)
    validators: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def apply_filters(
    workflows: Sequence[Mapping[str, Any]],
    filters: Optional[TransferFilters],
) -> List[Mapping[str, Any]]:
    """Select source workflows.

    Filters combine with AND. ``tags`` keeps workflows with any of the tags;
    ``exclude_tags`` drops workflows with any of them, untagged workflows
    are never excluded.
    """
    selected = [w for w in workflows if isinstance(w, Mapping)]
    if filters is None:
        return selected

    if filters.workflow_ids:
        ids = set(filters.workflow_ids)
        selected = [w for w in selected if str(w.get("id")) in ids]
    if filters.workflow_names:
        names = set(filters.workflow_names)
        selected = [w for w in selected if w.get("name") in names]
    if filters.tags:
        wanted = set(filters.tags)
        selected = [w for w in selected if wanted.intersection(tag_names(w.get("tags")))]
    if filters.exclude_tags:
        excluded = set(filters.exclude_tags)
        selected = [w for w in selected if not excluded.intersection(tag_names(w.get("tags")))]
    return selected


class TagResolver:
    """Maps tag names to target tag ids, creating missing tags once per run."""

    def __init__(self, client: WorkflowClient, policy: RetryPolicy, should_continue: Callable[[], bool]) -> None:
        self.client = client
        self.policy = policy
        self.should_continue = should_continue
        self._ids: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    async def resolve(self, names: Sequence[str]) -> List[str]:
        if not names:
            return []
        async with self._lock:
            if self._ids is None:
                tags = await retry_async(
                    self.client.list_tags,
                    self.policy,
                    should_continue=self.should_continue,
                    description="list_target_tags",
                )
                self._ids = {t["name"]: str(t["id"]) for t in tags if t.get("name") and t.get("id")}

            ids = []
            for name in dict.fromkeys(names):
                if name not in self._ids:
                    created = await retry_async(
                        lambda: self.client.create_tag(name),
                        self.policy,
                        should_continue=self.should_continue,
                        description="create_target_tag",
                    )
                    self._ids[name] = str(created["id"])
                ids.append(self._ids[name])
            return ids


# ============================================================================
# Transfer manager
# ============================================================================

class TransferManager:
    """Orchestrates a transfer run between two n8n instances.

    Example:
        >>> manager = TransferManager(source_client, target_client)
        >>> summary = await manager.transfer({"dry_run": True})
        >>> summary.transferred
    """

    def __init__(
        self,
        source_client: WorkflowClient,
        target_client: WorkflowClient,
        registry: Optional[PluginRegistry] = None,
        settings: Optional[TransferSettings] = None,
        report_sink: Optional[ReportSink] = None,
        retry_policy: Optional[RetryPolicy] = None,
        handle_signals: bool = True,
    ) -> None:
        self.source_client = source_client
        self.target_client = target_client
        self.settings = settings or get_settings().transfer
        if registry is None:
            registry = get_registry()
            load_plugins(registry, plugin_dirs=self.settings.plugin_dirs, include_entry_points=False)
        self.registry = registry
        self.report_sink = report_sink
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.handle_signals = handle_signals
        self._token: Optional[CancellationToken] = None
        self._progress = TransferProgress()

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def get_progress(self) -> Dict[str, Any]:
        return asdict(self._progress)

    def cancel(self) -> bool:
        """Request cooperative cancellation of the running transfer.

        Returns:
            False if no transfer is running, True otherwise
        """
        if self._token is None:
            logger.warning("cancel_ignored_no_transfer_running")
            return False
        self._token.cancel(reason="cancel() called")
        return True

    # ------------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------------

    async def transfer(
        self,
        options: Union[TransferOptions, Dict[str, Any], None] = None,
        token: Optional[CancellationToken] = None,
    ) -> TransferSummary:
        """Transfer the selected source workflows to the target instance.

        Args:
            options: Run options (model, mapping or None for defaults)
            token: Cancellation token; a fresh one is created when omitted

        Returns:
            TransferSummary built once every workflow is terminal

        Raises:
            TransferError: If a transfer is already running
            TransferConfigurationError: On startup failures (unknown
                deduplicator, missing validators, unreachable instance)
        """
        if self.is_running:
            raise TransferError("A transfer is already running")

        options = TransferOptions.coerce(options)
        token = token or CancellationToken()
        run_id = uuid.uuid4().hex[:12]
        handlers = SignalHandlers(token) if self.handle_signals else None

        self._token = token
        self._progress = TransferProgress(status="running", run_id=run_id)
        start_time = utcnow()

        with LogContext(run_id=run_id, dry_run=options.dry_run):
            if handlers is not None:
                handlers.install()
            try:
                plugins = self._resolve_plugins(options)
                await self._check_connectivity(self.source_client, "source")
                await self._check_connectivity(self.target_client, "target")

                source_workflows = await self._fetch_workflows(self.source_client, "source", token)
                target_workflows = await self._fetch_workflows(self.target_client, "target", token)
                workflows = apply_filters(source_workflows, options.filters)
                logger.info(
                    "transfer_started",
                    source_total=len(source_workflows),
                    selected=len(workflows),
                    target_total=len(target_workflows),
                    plugins=plugins.names,
                )

                states = [TransferState(workflow=w) for w in workflows]
                self._progress.total = len(states)
                finished = await self._run_pipeline(states, list(target_workflows), plugins, options, token)

                summary = TransferSummary.build(
                    finished,
                    start_time=start_time,
                    cancelled=token.is_cancelled,
                    dry_run=options.dry_run,
                    source=getattr(self.source_client, "label", "unknown"),
                    target=getattr(self.target_client, "label", "unknown"),
                    options=options.model_dump(mode="json"),
                    plugins_used=plugins.names,
                )
                self._progress.status = "cancelled" if summary.cancelled else "completed"
                logger.info(
                    "transfer_finished",
                    total=summary.total,
                    transferred=summary.transferred,
                    skipped=summary.skipped,
                    failed=summary.failed,
                    duplicates=summary.duplicates,
                    cancelled=summary.cancelled,
                    duration_ms=summary.duration_ms,
                )

                summary.reports = self.generate_reports(summary, plugins.reporters)
                return summary
            except Exception:
                self._progress.status = "failed"
                raise
            finally:
                if handlers is not None:
                    handlers.remove()
                self._token = None

    async def validate(
        self,
        options: Union[TransferOptions, Dict[str, Any], None] = None,
    ) -> ValidationReport:
        """Run validators over the selected source workflows without writing.

        Raises:
            TransferConfigurationError: If the source is unreachable or no
                validator is available
        """
        options = TransferOptions.coerce(options)
        validators = self._resolve_validators(options.validators)
        if not validators:
            raise TransferConfigurationError("No validators available; cannot perform validation")

        await self._check_connectivity(self.source_client, "source")
        workflows = apply_filters(await self._fetch_workflows(self.source_client, "source"), options.filters)

        issues: List[ValidationIssue] = []
        for workflow in workflows:
            result, _ = self._run_validators(workflow, validators)
            if result.errors or result.warnings:
                issues.append(ValidationIssue(
                    workflow=workflow_name(workflow),
                    workflow_id=str(workflow["id"]) if workflow.get("id") is not None else None,
                    errors=result.errors,
                    warnings=result.warnings,
                ))

        invalid = sum(1 for issue in issues if issue.errors)
        report = ValidationReport(
            total=len(workflows),
            valid=len(workflows) - invalid,
            invalid=invalid,
            errors=sum(len(issue.errors) for issue in issues),
            warnings=sum(len(issue.warnings) for issue in issues),
            issues=issues,
            validators=[v.name for v in validators],
        )
        logger.info(
            "validation_finished",
            total=report.total,
            valid=report.valid,
            invalid=report.invalid,
            errors=report.errors,
            warnings=report.warnings,
        )
        return report

    def generate_reports(
        self,
        summary: TransferSummary,
        reporters: Sequence[Union[str, ReporterPlugin]],
    ) -> Dict[str, str]:
        """Run reporters over a summary and hand each output to the sink.

        A failing reporter or sink is logged and skipped.

        Returns:
            Mapping of reporter name to generated report
        """
        outputs: Dict[str, str] = {}
        timestamp = summary.end_time.strftime("%Y%m%dT%H%M%SZ")

        for reporter in reporters:
            if isinstance(reporter, str):
                plugin = self.registry.get(reporter, PluginKind.REPORTER)
                if plugin is None:
                    logger.warning("reporter_not_found", reporter=reporter)
                    continue
                reporter = plugin

            try:
                content = reporter.generate(summary)
            except Exception as e:
                logger.error("reporter_failed", reporter=reporter.name, error=str(e), exc_info=True)
                continue
            outputs[reporter.name] = content

            if self.report_sink is not None:
                filename = f"transfer-report-{timestamp}.{reporter.extension}"
                try:
                    self.report_sink(filename, content)
                except Exception as e:
                    logger.error("report_sink_failed", reporter=reporter.name, filename=filename, error=str(e))
                    continue
                logger.info("report_written", reporter=reporter.name, filename=filename)

        return outputs

    # ------------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------------

    def _enabled(self, name: str, kind: PluginKind) -> Optional[BasePlugin]:
        plugin = self.registry.get(name, kind)
        if plugin is None:
            return None
        if not plugin.enabled:
            logger.warning("plugin_disabled_skipped", plugin=plugin.name, kind=kind.value)
            return None
        return plugin

    def _resolve_validators(self, names: Optional[Sequence[str]]) -> List[ValidatorPlugin]:
        if names is None:
            return self.registry.list_by_kind(PluginKind.VALIDATOR, enabled_only=True)
        validators = []
        for name in names:
            if self.registry.get(name, PluginKind.VALIDATOR) is None:
                logger.warning("validator_not_found", validator=name)
                continue
            plugin = self._enabled(name, PluginKind.VALIDATOR)
            if plugin is not None:
                validators.append(plugin)
        return validators

    def _resolve_plugins(self, options: TransferOptions) -> RunPlugins:
        """Resolve the plugins named by the options.

        Raises:
            TransferConfigurationError: On an unknown deduplicator, or when
                validators are required but none is available
        """
        plugins = RunPlugins(validators=self._resolve_validators(options.validators))
        if options.require_validators and not plugins.validators:
            raise TransferConfigurationError("Validators are required but none is registered and enabled")

        names = options.deduplicator
        if isinstance(names, str):
            names = [names]
        for name in names or []:
            if self.registry.get(name, PluginKind.DEDUPLICATOR) is None:
                raise TransferConfigurationError(f"Unknown deduplicator: {name}")
            plugin = self._enabled(name, PluginKind.DEDUPLICATOR)
            if plugin is not None:
                plugins.deduplicators.append(plugin)

        for name in options.reporters:
            if self.registry.get(name, PluginKind.REPORTER) is None:
                logger.warning("reporter_not_found", reporter=name)
                continue
            plugin = self._enabled(name, PluginKind.REPORTER)
            if plugin is not None:
                plugins.reporters.append(plugin)

        return plugins

    async def _check_connectivity(self, client: WorkflowClient, role: str) -> None:
        try:
            result = await client.test_connection()
        except Exception as e:
            raise TransferConfigurationError(f"{role.capitalize()} connectivity test failed: {e}") from e
        if not result.get("success"):
            message = f"{role.capitalize()} connection failed: {result.get('error', 'unknown error')}"
            if result.get("suggestion"):
                message = f"{message}. {result['suggestion']}"
            raise TransferConfigurationError(message)
        logger.info("connectivity_ok", role=role)

    async def _fetch_workflows(
        self,
        client: WorkflowClient,
        role: str,
        token: Optional[CancellationToken] = None,
    ) -> List[Mapping[str, Any]]:
        workflows = await retry_async(
            client.list_workflows,
            self.retry_policy,
            should_continue=(lambda: not token.is_cancelled) if token else None,
            description=f"list_{role}_workflows",
        )
        return list(workflows or [])

    # ------------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------------

    async def _run_pipeline(
        self,
        states: List[TransferState],
        target_workflows: List[Mapping[str, Any]],
        plugins: RunPlugins,
        options: TransferOptions,
        token: CancellationToken,
    ) -> List[TransferState]:
        """Process states with bounded parallelism; return them in completion order."""
        pending: asyncio.Queue = asyncio.Queue()
        for state in states:
            pending.put_nowait(state)
        results: asyncio.Queue = asyncio.Queue()
        finished: List[TransferState] = []

        def should_continue() -> bool:
            return not token.is_cancelled

        tags = TagResolver(self.target_client, self.retry_policy, should_continue)
        parallelism = options.parallelism or self.settings.parallelism

        async def worker(worker_id: int) -> None:
            while True:
                try:
                    state = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if token.is_cancelled:
                    state.transition(TransferStatus.CANCELLED, reason="cancelled")
                else:
                    with workflow_scope(state.name):
                        await self._process(state, target_workflows, plugins, options, tags, should_continue)
                await results.put(state)

        async def collector() -> None:
            while len(finished) < len(states):
                state = await results.get()
                finished.append(state)
                self._progress.record(state)

        collector_task = asyncio.create_task(collector())
        workers = [asyncio.create_task(worker(i)) for i in range(min(parallelism, len(states)))]
        try:
            await asyncio.gather(*workers)
            await collector_task
        finally:
            for task in (*workers, collector_task):
                if not task.done():
                    task.cancel()
        return finished

    async def _process(
        self,
        state: TransferState,
        target_workflows: List[Mapping[str, Any]],
        plugins: RunPlugins,
        options: TransferOptions,
        tags: TagResolver,
        should_continue: Callable[[], bool],
    ) -> None:
        """Run one workflow through the pipeline to a terminal status."""
        try:
            state.transition(TransferStatus.VALIDATING)
            validation, plugin_failed = self._run_validators(state.workflow, plugins.validators)
            state.validation = validation
            if not validation.valid:
                state.error_code = ErrorCode.PLUGIN if plugin_failed else ErrorCode.VALIDATION
                state.transition(TransferStatus.FAILED, reason="; ".join(validation.errors))
                logger.warning("workflow_validation_failed", errors=validation.errors)
                return

            if options.skip_credentials and has_credentials(state.workflow):
                state.transition(TransferStatus.SKIPPED, reason="credentials")
                logger.info("workflow_skipped", reason="credentials")
                return

            duplicate_reason = self._find_duplicate(state.workflow, target_workflows, plugins.deduplicators)
            if duplicate_reason is not None:
                state.duplicate = True
                state.transition(TransferStatus.SKIPPED, reason=duplicate_reason)
                logger.info("workflow_skipped", reason=duplicate_reason)
                return

            state.transition(TransferStatus.TRANSFERRING)
            if options.dry_run:
                state.transition(TransferStatus.COMPLETED, reason="dry-run")
                target_workflows.append(state.workflow)
                logger.info("workflow_dry_run_completed")
                return

            await self._write(state, tags, options, should_continue)
            target_workflows.append({**state.workflow, "id": state.target_id})
        except Exception as e:
            if state.is_terminal:
                raise
            state.error_code = classify_error(e)
            state.transition(TransferStatus.FAILED, reason=str(e) or type(e).__name__)
            logger.error("workflow_transfer_failed", error=str(e), code=state.error_code.value, attempts=state.attempts)

    async def _write(
        self,
        state: TransferState,
        tags: TagResolver,
        options: TransferOptions,
        should_continue: Callable[[], bool],
    ) -> None:
        tag_ids: List[str] = []
        if options.transfer_tags:
            tag_ids = await tags.resolve(tag_names(state.workflow.get("tags")))

        def count_attempt(attempt: int) -> None:
            state.attempts = attempt

        try:
            created = await retry_async(
                lambda: self.target_client.create_workflow(state.workflow, tag_ids),
                self.retry_policy,
                should_continue=should_continue,
                on_attempt=count_attempt,
                description="create_workflow",
            )
        finally:
            if self.settings.request_delay:
                await asyncio.sleep(self.settings.request_delay)

        target_id = created.get("id") if isinstance(created, Mapping) else None
        state.target_id = str(target_id) if target_id is not None else None
        state.transition(TransferStatus.COMPLETED)
        logger.info("workflow_transferred", target_id=state.target_id, attempts=state.attempts)

    def _run_validators(
        self,
        workflow: Mapping[str, Any],
        validators: Sequence[ValidatorPlugin],
    ) -> Tuple[ValidationResult, bool]:
        """Run validators and merge their results.

        A validator raising an exception contributes a blocking error.

        Returns:
            Merged result and whether any validator raised
        """
        results = []
        plugin_failed = False
        for validator in validators:
            try:
                results.append(validator.validate(workflow))
            except Exception as e:
                plugin_failed = True
                logger.error("validator_error", validator=validator.name, error=str(e), exc_info=True)
                results.append(ValidationResult(
                    valid=False,
                    errors=[f"{validator.name}: validator error: {e}"],
                    metadata={"validator": validator.name},
                ))
        return ValidationResult.merge(results), plugin_failed

    def _find_duplicate(
        self,
        workflow: Mapping[str, Any],
        target_workflows: List[Mapping[str, Any]],
        deduplicators: Sequence[DeduplicatorPlugin],
    ) -> Optional[str]:
        """Return the skip reason of the first deduplicator that matches.

        A deduplicator raising an exception is treated as inconclusive.
        """
        for deduplicator in deduplicators:
            try:
                if deduplicator.is_duplicate(workflow, target_workflows):
                    return deduplicator.get_reason() or "duplicate"
            except Exception as e:
                logger.error("deduplicator_error", deduplicator=deduplicator.name, error=str(e), exc_info=True)
        return None
