"""Unit tests for the transfer manager."""

import asyncio
import re
import textwrap
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from n8n_transfer.config import TransferFilters, TransferOptions, TransferSettings
from n8n_transfer.core.cancellation import CancellationToken
from n8n_transfer.core.errors import N8NClientError, TransferConfigurationError, TransferError
from n8n_transfer.core.models import TransferStatus
from n8n_transfer.core.transfer_manager import TransferManager, ValidationReport, apply_filters
from n8n_transfer.plugins.base import DeduplicatorPlugin, ReporterPlugin, ValidatorPlugin
from n8n_transfer.plugins.registry import get_registry

# ============================================================================
# Test plugins
# ============================================================================

class ExplodingValidator(ValidatorPlugin):
    """Validator that always raises."""

    def __init__(self):
        super().__init__("exploding-validator", "1.0.0")

    def validate(self, workflow):
        raise RuntimeError("kaboom")


class ExplodingDeduplicator(DeduplicatorPlugin):
    """Deduplicator that always raises."""

    def __init__(self):
        super().__init__("exploding-deduplicator", "1.0.0")

    def is_duplicate(self, workflow, existing_workflows):
        raise RuntimeError("dedup down")


class ExplodingReporter(ReporterPlugin):
    """Reporter that always raises."""

    def __init__(self):
        super().__init__("exploding-reporter", "1.0.0")

    def generate(self, summary):
        raise RuntimeError("cannot render")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def make_manager(registry, fast_policy, transfer_settings):
    """Build a manager over fake clients without touching process signals."""

    def factory(source, target, **kwargs):
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("settings", transfer_settings)
        kwargs.setdefault("retry_policy", fast_policy)
        kwargs.setdefault("handle_signals", False)
        return TransferManager(source, target, **kwargs)

    return factory


@pytest.fixture
def source(client_factory, workflow_factory):
    return client_factory(
        [workflow_factory(f"Workflow {i}", tags=["prod"] if i % 2 else ["dev"]) for i in range(1, 6)],
        label="https://source.example.com",
    )


@pytest.fixture
def target(client_factory):
    return client_factory(label="https://target.example.com")


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


# ============================================================================
# Filters
# ============================================================================

@pytest.mark.unit
class TestApplyFilters:
    """Tests for apply_filters."""

    def test_no_filters(self, workflow_factory):
        workflows = [workflow_factory("A"), workflow_factory("B"), "junk"]
        assert [w["name"] for w in apply_filters(workflows, None)] == ["A", "B"]

    def test_filters_combine(self, workflow_factory):
        workflows = [
            workflow_factory("A", workflow_id="1", tags=["prod"]),
            workflow_factory("B", workflow_id="2", tags=["prod", "draft"]),
            workflow_factory("C", workflow_id="3", tags=["dev"]),
            workflow_factory("D", workflow_id="4"),
        ]

        assert [w["name"] for w in apply_filters(workflows, TransferFilters(tags=["prod", "dev"]))] == ["A", "B", "C"]
        assert [w["name"] for w in apply_filters(workflows, TransferFilters(exclude_tags=["draft"]))] == ["A", "C", "D"]
        assert [w["name"] for w in apply_filters(workflows, TransferFilters(workflow_ids=["2", "4"]))] == ["B", "D"]
        assert [w["name"] for w in apply_filters(workflows, TransferFilters(workflow_names=["C"]))] == ["C"]
        combined = TransferFilters(tags=["prod"], exclude_tags=["draft"])
        assert [w["name"] for w in apply_filters(workflows, combined)] == ["A"]

    def test_numeric_ids_match_as_strings(self):
        assert apply_filters([{"id": 7, "name": "x"}], TransferFilters(workflow_ids=["7"])) == [{"id": 7, "name": "x"}]


# ============================================================================
# Transfer runs
# ============================================================================

@pytest.mark.unit
class TestTransfer:
    """Tests for TransferManager.transfer."""

    @pytest.mark.asyncio
    async def test_transfers_all_workflows(self, make_manager, source, target):
        summary = await make_manager(source, target).transfer({"reporters": []})

        assert summary.total == 5
        assert summary.transferred == 5
        assert summary.failed == 0
        assert summary.cancelled is False
        assert target.create_calls == 5
        assert all(s.status is TransferStatus.COMPLETED for s in summary.workflows)
        assert all(s.target_id and s.attempts == 1 for s in summary.workflows)
        assert summary.source == "https://source.example.com"
        assert summary.plugins_used == ["integrity-validator", "standard-deduplicator"]

    @pytest.mark.asyncio
    async def test_tags_created_once_and_applied(self, make_manager, source, target):
        await make_manager(source, target).transfer({"reporters": []})

        assert sorted(t["name"] for t in target.tags) == ["dev", "prod"]
        assert target.tag_lists == 1
        assert all(len(w["tags"]) == 1 for w in target.created)

    @pytest.mark.asyncio
    async def test_transfer_tags_disabled(self, make_manager, source, target):
        await make_manager(source, target).transfer({"reporters": [], "transfer_tags": False})
        assert target.tags == []
        assert target.tag_lists == 0

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory(f"W{i}") for i in range(12)])
        target.create_delay = 0.01

        summary = await make_manager(source, target).transfer({"parallelism": 3, "reporters": []})

        assert summary.transferred == 12
        assert 1 <= target.max_active <= 3

    @pytest.mark.asyncio
    async def test_parallelism_falls_back_to_settings(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory(f"W{i}") for i in range(8)])
        target.create_delay = 0.01

        await make_manager(source, target, settings=TransferSettings(parallelism=2)).transfer({"reporters": []})

        assert target.max_active <= 2

    @pytest.mark.asyncio
    async def test_dry_run_never_writes(self, make_manager, source, target):
        summary = await make_manager(source, target).transfer({"dry_run": True, "reporters": []})

        assert target.create_calls == 0
        assert target.tags == []
        assert summary.transferred == 5
        assert summary.dry_run is True
        assert {s.reason for s in summary.workflows} == {"dry-run"}

    @pytest.mark.asyncio
    async def test_empty_selection(self, make_manager, source, target):
        summary = await make_manager(source, target).transfer(
            {"filters": {"workflowNames": ["nothing"]}, "reporters": []}
        )
        assert summary.total == 0
        assert summary.workflows == []

    @pytest.mark.asyncio
    async def test_duplicates_skipped(self, make_manager, client_factory, workflow_factory, source):
        target = client_factory([workflow_factory("Workflow 1", tags=["prod"])])

        summary = await make_manager(source, target).transfer({"reporters": []})

        assert summary.skipped == 1
        assert summary.duplicates == 1
        assert summary.transferred == 4
        skipped = summary.by_status(TransferStatus.SKIPPED)[0]
        assert skipped.name == "Workflow 1"
        assert skipped.duplicate is True
        assert skipped.reason.startswith("Duplicate workflow found")

    @pytest.mark.asyncio
    async def test_duplicates_within_one_run(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([
            workflow_factory("Same", workflow_id="1"),
            workflow_factory("Same", workflow_id="2"),
        ])

        summary = await make_manager(source, target).transfer({"parallelism": 1, "reporters": []})

        assert summary.transferred == 1
        assert summary.duplicates == 1

    @pytest.mark.asyncio
    async def test_deduplication_disabled(self, make_manager, client_factory, workflow_factory, source):
        target = client_factory([workflow_factory("Workflow 1", tags=["prod"])])
        summary = await make_manager(source, target).transfer({"deduplicator": None, "reporters": []})
        assert summary.transferred == 5

    @pytest.mark.asyncio
    async def test_skip_credentials(self, make_manager, client_factory, workflow_factory, target):
        with_creds = workflow_factory("Slack alert")
        with_creds["nodes"][1]["credentials"] = {"slackApi": {"id": "1", "name": "Slack"}}
        source = client_factory([with_creds, workflow_factory("Plain")])

        summary = await make_manager(source, target).transfer({"skip_credentials": True, "reporters": []})

        assert summary.skipped == 1
        assert summary.duplicates == 0
        assert summary.by_status(TransferStatus.SKIPPED)[0].reason == "credentials"

    @pytest.mark.asyncio
    async def test_validation_failure(self, make_manager, client_factory, workflow_factory, target):
        broken = workflow_factory("Broken", connections={"n1": {"main": [[{"node": "n9"}]]}})
        source = client_factory([broken, workflow_factory("Fine")])

        summary = await make_manager(source, target).transfer({"reporters": []})

        assert summary.failed == 1
        assert summary.transferred == 1
        failed = summary.by_status(TransferStatus.FAILED)[0]
        assert failed.validation.valid is False
        assert "nonexistent target node" in failed.reason
        assert summary.errors[0].code == "ERR_VALIDATION"
        assert target.create_calls == 1


# ============================================================================
# Retry policy
# ============================================================================

@pytest.mark.unit
class TestTransferRetries:
    """Per-workflow retry behaviour."""

    @pytest.mark.asyncio
    async def test_server_errors_retried_to_max_attempts(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory("Flaky")])
        target.create_failures = [N8NClientError(500, "boom")] * 5

        summary = await make_manager(source, target).transfer({"reporters": []})

        state = summary.workflows[0]
        assert state.status is TransferStatus.FAILED
        assert state.attempts == 3
        assert target.create_calls == 3
        assert summary.errors[0].code == "ERR_SERVER"

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory("Locked"), workflow_factory("Other")])
        target.create_failures = [N8NClientError(401, "unauthorized")]

        summary = await make_manager(source, target).transfer({"parallelism": 1, "reporters": []})

        failed = summary.by_status(TransferStatus.FAILED)
        assert len(failed) == 1
        assert failed[0].attempts == 1
        assert summary.errors[0].code == "ERR_AUTH_INVALID"
        assert summary.transferred == 1

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory("Busy")])
        target.create_failures = [N8NClientError(429, "slow down"), None]

        summary = await make_manager(source, target).transfer({"reporters": []})

        assert summary.workflows[0].status is TransferStatus.COMPLETED
        assert summary.workflows[0].attempts == 2

    @pytest.mark.asyncio
    async def test_request_delay_after_write(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory("A"), workflow_factory("B")])
        settings = TransferSettings(request_delay=0.5)

        with patch("n8n_transfer.core.transfer_manager.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            await make_manager(source, target, settings=settings).transfer({"reporters": []})

        delays = [call.args[0] for call in mock_sleep.await_args_list]
        assert delays.count(0.5) == 2


# ============================================================================
# Cancellation
# ============================================================================

@pytest.mark.unit
class TestCancellation:
    """Cooperative cancellation of a running transfer."""

    @pytest.mark.asyncio
    async def test_cancel_after_k_started(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory(f"W{i}") for i in range(7)])
        target.gate = asyncio.Event()
        manager = make_manager(source, target)

        task = asyncio.create_task(manager.transfer({"parallelism": 2, "reporters": []}))
        await wait_until(lambda: target.started == 2)
        assert manager.is_running is True
        assert manager.cancel() is True
        target.gate.set()
        summary = await task

        assert summary.cancelled is True
        assert summary.transferred == 2
        assert summary.cancelled_count == 5
        assert sum(1 for s in summary.workflows if s.status is not TransferStatus.CANCELLED) == 2
        assert target.create_calls == 2
        assert manager.is_running is False
        assert manager.get_progress()["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancelled_in_flight_retry_stops(self, make_manager, client_factory, workflow_factory, target):
        source = client_factory([workflow_factory("Flaky")])
        target.gate = asyncio.Event()
        target.create_failures = [N8NClientError(503, "unavailable")] * 5
        token = CancellationToken()
        manager = make_manager(source, target)

        task = asyncio.create_task(manager.transfer({"reporters": []}, token=token))
        await wait_until(lambda: target.started == 1)
        token.cancel("test")
        target.gate.set()
        summary = await task

        state = summary.workflows[0]
        assert state.status is TransferStatus.FAILED
        assert state.attempts == 1
        assert target.create_calls == 1

    @pytest.mark.asyncio
    async def test_pre_cancelled_token(self, make_manager, source, target):
        token = CancellationToken()
        token.cancel()

        summary = await make_manager(source, target).transfer({"reporters": []}, token=token)

        assert summary.cancelled_count == 5
        assert target.create_calls == 0

    def test_cancel_when_idle(self, make_manager, source, target):
        assert make_manager(source, target).cancel() is False

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, make_manager, source, target):
        target.gate = asyncio.Event()
        manager = make_manager(source, target)
        task = asyncio.create_task(manager.transfer({"reporters": []}))
        await wait_until(lambda: target.started >= 1)

        with pytest.raises(TransferError, match="already running"):
            await manager.transfer()

        target.gate.set()
        await task

    @pytest.mark.asyncio
    async def test_signal_handlers_removed_after_failing_run(self, make_manager, source, target):
        target.connection = {"success": False, "error": "Authentication failed", "suggestion": "Check the key"}

        with patch("n8n_transfer.core.transfer_manager.SignalHandlers") as mock_handlers:
            manager = make_manager(source, target, handle_signals=True)
            with pytest.raises(TransferConfigurationError):
                await manager.transfer()

        mock_handlers.return_value.install.assert_called_once()
        mock_handlers.return_value.remove.assert_called_once()
        assert manager.is_running is False


# ============================================================================
# Startup errors and plugin policy
# ============================================================================

@pytest.mark.unit
class TestStartupAndPlugins:
    """Configuration-level failures and plugin error handling."""

    def test_default_registry_loads_plugin_dirs(self, source, target, tmp_path):
        (tmp_path / "name_length.py").write_text(textwrap.dedent('''
            from n8n_transfer.plugins.base import ValidationResult, ValidatorPlugin


            class NameLengthValidator(ValidatorPlugin):
                def __init__(self):
                    super().__init__("name-length-validator", "1.0.0")

                def validate(self, workflow):
                    return ValidationResult(valid=len(workflow.get("name", "")) <= 128)
        '''))

        manager = TransferManager(
            source,
            target,
            settings=TransferSettings(plugin_dirs=[tmp_path]),
            handle_signals=False,
        )

        assert manager.registry is get_registry()
        assert "name-length-validator" in manager.registry
        assert "integrity-validator" in manager.registry

    @pytest.mark.asyncio
    async def test_unreachable_target_aborts(self, make_manager, source, target):
        target.connection = {"success": False, "error": "Could not connect to server", "suggestion": "Check the URL"}

        with pytest.raises(TransferConfigurationError, match="Target connection failed: Could not connect"):
            await make_manager(source, target).transfer()

        assert target.create_calls == 0

    @pytest.mark.asyncio
    async def test_connection_test_raising_aborts(self, make_manager, source, target):
        source.test_connection = AsyncMock(side_effect=RuntimeError("dns"))
        with pytest.raises(TransferConfigurationError, match="Source connectivity test failed"):
            await make_manager(source, target).transfer()

    @pytest.mark.asyncio
    async def test_unknown_deduplicator(self, make_manager, source, target):
        with pytest.raises(TransferConfigurationError, match="Unknown deduplicator: nope"):
            await make_manager(source, target).transfer({"deduplicator": "nope"})

    @pytest.mark.asyncio
    async def test_required_validators_missing(self, make_manager, source, target, registry):
        registry.get("integrity-validator").disable()

        with pytest.raises(TransferConfigurationError, match="Validators are required"):
            await make_manager(source, target).transfer({"require_validators": True})

    @pytest.mark.asyncio
    async def test_unknown_validator_skipped(self, make_manager, source, target):
        summary = await make_manager(source, target).transfer({"validators": ["missing"], "reporters": []})
        assert summary.transferred == 5
        assert "missing" not in summary.plugins_used

    @pytest.mark.asyncio
    async def test_all_enabled_validators(self, make_manager, source, target):
        summary = await make_manager(source, target).transfer({"validators": None, "reporters": []})
        assert {"schema-validator", "integrity-validator"} <= set(summary.plugins_used)

    @pytest.mark.asyncio
    async def test_validator_exception_fails_workflow(self, make_manager, source, target, registry):
        registry.register(ExplodingValidator())

        summary = await make_manager(source, target).transfer({"validators": ["exploding-validator"], "reporters": []})

        assert summary.failed == 5
        assert target.create_calls == 0
        assert summary.workflows[0].reason == "exploding-validator: validator error: kaboom"
        assert {e.code for e in summary.errors} == {"ERR_PLUGIN"}

    @pytest.mark.asyncio
    async def test_deduplicator_exception_is_inconclusive(self, make_manager, source, target, registry):
        registry.register(ExplodingDeduplicator())

        summary = await make_manager(source, target).transfer(
            {"deduplicator": "exploding-deduplicator", "reporters": []}
        )

        assert summary.transferred == 5
        assert summary.duplicates == 0


# ============================================================================
# Reports, validation pass and progress
# ============================================================================

@pytest.mark.unit
class TestReportsAndValidation:
    """Report generation, validation-only pass and progress."""

    @pytest.mark.asyncio
    async def test_reports_written_to_sink(self, make_manager, source, target):
        sink = MagicMock()
        manager = make_manager(source, target, report_sink=sink)

        summary = await manager.transfer({"reporters": ["markdown-reporter", "json-reporter", "csv-reporter"]})

        assert set(summary.reports) == {"markdown-reporter", "json-reporter", "csv-reporter"}
        filenames = [call.args[0] for call in sink.call_args_list]
        assert len(filenames) == 3
        assert all(re.fullmatch(r"transfer-report-\d{8}T\d{6}Z\.(md|json|csv)", name) for name in filenames)
        assert summary.reports["markdown-reporter"].startswith("# n8n Transfer Report")

    @pytest.mark.asyncio
    async def test_failing_reporter_skipped(self, make_manager, source, target, registry):
        registry.register(ExplodingReporter())
        sink = MagicMock(side_effect=[OSError("disk full"), None])
        manager = make_manager(source, target, report_sink=sink)

        summary = await manager.transfer({"reporters": ["exploding-reporter", "json-reporter", "csv-reporter"]})

        assert set(summary.reports) == {"json-reporter", "csv-reporter"}
        assert sink.call_count == 2

    def test_generate_reports_accepts_instances(self, make_manager, source, target, sample_summary, registry):
        manager = make_manager(source, target)
        reports = manager.generate_reports(sample_summary, [registry.get("csv-reporter"), "unknown-reporter"])
        assert list(reports) == ["csv-reporter"]

    @pytest.mark.asyncio
    async def test_progress(self, make_manager, source, target):
        manager = make_manager(source, target)
        assert manager.get_progress()["status"] == "idle"

        await manager.transfer({"reporters": []})

        progress = manager.get_progress()
        assert progress["status"] == "completed"
        assert progress["total"] == 5
        assert progress["processed"] == 5
        assert progress["transferred"] == 5
        assert progress["run_id"]

    @pytest.mark.asyncio
    async def test_progress_after_failed_startup(self, make_manager, source, target):
        manager = make_manager(source, target)
        with pytest.raises(TransferConfigurationError):
            await manager.transfer({"deduplicator": "nope"})
        assert manager.get_progress()["status"] == "failed"

    @pytest.mark.asyncio
    async def test_validate_only(self, make_manager, client_factory, workflow_factory, target):
        broken = workflow_factory("Broken", connections={"n1": {"main": [[{"node": "n9"}]]}})
        source = client_factory([broken, workflow_factory("Fine")])
        target.test_connection = AsyncMock()

        report = await make_manager(source, target).validate(TransferOptions())

        assert isinstance(report, ValidationReport)
        assert report.total == 2
        assert report.valid == 1
        assert report.invalid == 1
        assert report.errors == 1
        assert report.issues[0].workflow == "Broken"
        assert report.validators == ["integrity-validator"]
        target.test_connection.assert_not_awaited()
        assert target.create_calls == 0
        assert report.to_dict()["total"] == 2

    @pytest.mark.asyncio
    async def test_validate_requires_validators(self, make_manager, source, target):
        with pytest.raises(TransferConfigurationError, match="No validators"):
            await make_manager(source, target).validate({"validators": []})
