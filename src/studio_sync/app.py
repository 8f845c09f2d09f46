"""
Application wiring.

Builds one store handle, one monitor and the client/poller/sync stack
from a StudioConfig, and passes them explicitly to each component.
"""

import logging
from dataclasses import dataclass

from studio_sync.connectivity.monitor import ConnectivityMonitor
from studio_sync.connectivity.probe import ConnectivityProbe
from studio_sync.core.config import StudioConfig, env_credential_lookup
from studio_sync.generation.client import CredentialLookup, GenerationClient
from studio_sync.generation.poller import OperationPoller
from studio_sync.generation.retry import RetryPolicy
from studio_sync.generation.service import GenerationService, HttpGenerationService
from studio_sync.store.database import LocalStore
from studio_sync.sync.engine import SyncEngine
from studio_sync.sync.submission import SubmissionService

logger = logging.getLogger(__name__)


@dataclass
class StudioApp:
    """Every long-lived component of a running studio client."""

    config: StudioConfig
    store: LocalStore
    monitor: ConnectivityMonitor
    service: GenerationService
    client: GenerationClient
    poller: OperationPoller
    submission: SubmissionService
    engine: SyncEngine
    probe: ConnectivityProbe | None = None

    async def start(self, *, probe: bool = False) -> "StudioApp":
        """Open the store, hook the engine to the monitor, optionally probe."""
        await self.store.initialize()
        self.engine.attach(self.monitor)
        if probe:
            self.probe = ConnectivityProbe(
                self.monitor,
                self.config.effective_probe_url,
                interval=self.config.probe_interval_seconds,
            )
            self.probe.start()
        logger.info("Studio client started (store: %s)", self.store.db_path)
        return self

    async def close(self) -> None:
        """Stop background work and release resources."""
        if self.probe is not None:
            await self.probe.stop()
        self.engine.detach(self.monitor)
        await self.engine.wait_idle()
        self.monitor.close()
        await self.service.aclose()
        await self.store.close()

    async def __aenter__(self) -> "StudioApp":
        return await self.start()

    async def __aexit__(self, *args) -> None:
        await self.close()


def build_app(
    config: StudioConfig,
    *,
    service: GenerationService | None = None,
    credentials: CredentialLookup | None = None,
    monitor: ConnectivityMonitor | None = None,
    retry_policy: RetryPolicy | None = None,
) -> StudioApp:
    """
    Construct the component graph from configuration.

    Args:
        config: Runtime settings
        service: Generation service (defaults to the HTTP implementation)
        credentials: Credential lookup (defaults to environment variables)
        monitor: Connectivity monitor (defaults to one starting online)
        retry_policy: Backoff settings (defaults to the configured ones)
    """
    store = LocalStore(config.db_path)
    monitor = monitor or ConnectivityMonitor(recovery_window=config.recovery_window_seconds)
    service = service or HttpGenerationService(
        base_url=config.api_base_url,
        image_model=config.image_model,
        edit_model=config.edit_model,
        video_model=config.video_model,
        script_model=config.script_model,
        timeout_seconds=config.timeout_seconds,
    )
    retry_policy = retry_policy or RetryPolicy(
        max_retries=config.max_retries,
        initial_delay=config.initial_delay_seconds,
        max_jitter=config.max_jitter_seconds,
    )
    client = GenerationClient(
        service,
        credentials or env_credential_lookup(),
        retry_policy=retry_policy,
        credential_service=config.api_key_env,
    )
    poller = OperationPoller(client, interval=config.poll_interval_seconds)
    submission = SubmissionService(store, client, poller, monitor)
    engine = SyncEngine(store, submission, max_sync_retries=config.max_sync_retries)

    return StudioApp(
        config=config,
        store=store,
        monitor=monitor,
        service=service,
        client=client,
        poller=poller,
        submission=submission,
        engine=engine,
    )
