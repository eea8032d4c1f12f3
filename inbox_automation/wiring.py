"""
Process-wide component wiring.

One cache and one resilience service are shared by every owner's mailbox
handle, so the circuit breaker and cache statistics describe the whole
process. The API lifespan and the worker both build their graph here.
"""

from dataclasses import dataclass

from inbox_automation.config import Settings, settings
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.repositories.automation_repository import (
    AutomationStore,
    PostgresAutomationRepository,
)
from inbox_automation.repositories.mailbox_repository import PostgresMailboxRepository
from inbox_automation.services.cache_service import MailCacheService
from inbox_automation.services.collaborators import ListUnsubscribeDetector
from inbox_automation.services.google_gmail_service import GoogleGmailService
from inbox_automation.services.job_handlers import Collaborators
from inbox_automation.services.mailbox_service import MailboxService, MailProvider
from inbox_automation.services.resilience import CircuitBreaker, ResilienceService
from inbox_automation.services.rules_engine import RulesEngine
from inbox_automation.services.scheduler_service import MailboxFactory, SchedulerService

logger = get_logger(__name__)


@dataclass(slots=True)
class AutomationComponents:
    settings: Settings
    cache: MailCacheService
    resilience: ResilienceService
    store: AutomationStore
    rules_engine: RulesEngine
    scheduler: SchedulerService
    mailbox_repository: PostgresMailboxRepository | None = None

    def mailbox_for(self, owner_id: str, provider: MailProvider) -> MailboxService:
        return MailboxService(provider, owner_id, self.cache, self.resilience)

    def gmail_mailbox(self, owner_id: str, access_token: str) -> MailboxService:
        provider = GoogleGmailService(
            access_token, timeout=self.settings.GMAIL_REQUEST_TIMEOUT_SECONDS
        )
        return self.mailbox_for(owner_id, provider)

    def token_mailbox_factory(self) -> MailboxFactory:
        """Mailbox factory for scheduled runs, backed by stored Google tokens."""

        async def factory(owner_id: str) -> MailboxService | None:
            if self.mailbox_repository is None:
                return None
            token = await self.mailbox_repository.get_access_token(owner_id)
            if not token:
                return None
            return self.gmail_mailbox(owner_id, token)

        return factory


def build_components(
    config: Settings | None = None,
    store: AutomationStore | None = None,
    collaborators: Collaborators | None = None,
    mailbox_repository: PostgresMailboxRepository | None = None,
) -> AutomationComponents:
    """
    Build the automation graph.

    Without an explicit store, the Postgres repositories are used for jobs,
    rules, preferences, analytics snapshots and unsubscribe candidates.
    """
    config = config or settings

    cache = MailCacheService(config.get_cache_config())
    resilience = ResilienceService(
        policy=config.get_retry_policy(),
        breaker=CircuitBreaker(**config.get_circuit_breaker_config()),
    )

    if store is None:
        store = PostgresAutomationRepository()
        mailbox_repository = mailbox_repository or PostgresMailboxRepository()

    if collaborators is None:
        if mailbox_repository is not None:
            collaborators = Collaborators(
                analytics=mailbox_repository,
                unsubscribe=ListUnsubscribeDetector(sink=mailbox_repository),
                preferences=mailbox_repository,
            )
        else:
            collaborators = Collaborators()

    rules_engine = RulesEngine(store)
    scheduler = SchedulerService(
        store,
        rules_engine,
        collaborators=collaborators,
        execution_retention=config.JOB_EXECUTION_RETENTION,
    )

    logger.info(
        "Automation components built",
        persistent_store=type(store).__name__,
        failure_threshold=resilience.breaker.failure_threshold,
        max_retries=resilience.policy.max_retries,
    )

    return AutomationComponents(
        settings=config,
        cache=cache,
        resilience=resilience,
        store=store,
        rules_engine=rules_engine,
        scheduler=scheduler,
        mailbox_repository=mailbox_repository,
    )
