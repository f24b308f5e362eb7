from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings
from app.core.security import TokenCipher, TokenVerifier, build_admin_token_verifier, build_task_token_verifier
from app.db.session import build_engine, build_session_factory
from app.services.content import ContentGenerator, HttpContentGenerator, TemplateContentGenerator
from app.services.dispatcher import TaskDispatcher, build_task_dispatcher
from app.services.handoff import AuthorizationHandoffManager
from app.services.job_repository import JobRepository
from app.services.jobs import JobStateMachine
from app.services.notifier import WebhookNotifier
from app.services.populator import StorePopulator, build_store_populator
from app.services.quota import QuotaGuard


@dataclass
class ServiceContainer:
    settings: Settings
    engine: Engine | None
    session_factory: sessionmaker[Session]
    repository: JobRepository
    quota_guard: QuotaGuard
    handoff: AuthorizationHandoffManager
    dispatcher: TaskDispatcher
    jobs: JobStateMachine
    admin_token_verifier: TokenVerifier | None
    task_token_verifier: TokenVerifier | None

    def shutdown(self) -> None:
        self.dispatcher.shutdown()
        if self.engine is not None:
            self.engine.dispose()


def build_services(
    settings: Settings,
    session_factory: sessionmaker[Session] | None = None,
    populator: StorePopulator | None = None,
    content_generator: ContentGenerator | None = None,
    handoff: AuthorizationHandoffManager | None = None,
    notifier: WebhookNotifier | None = None,
    dispatcher: TaskDispatcher | None = None,
    admin_token_verifier: TokenVerifier | None = None,
    task_token_verifier: TokenVerifier | None = None,
) -> ServiceContainer:
    engine = None
    if session_factory is None:
        engine = build_engine(settings.database_url)
        session_factory = build_session_factory(engine)

    repository = JobRepository(session_factory)
    quota_guard = QuotaGuard(settings.quota_entity_types, settings.default_site_limit)

    if handoff is None:
        handoff = AuthorizationHandoffManager(
            client_id=settings.shopify_client_id,
            client_secret=settings.shopify_client_secret,
            public_base_url=settings.public_base_url,
            state_secret=settings.oauth_state_secret or settings.secret_key,
            cipher=TokenCipher(settings.secret_key, settings.encryption_salt),
            timeout_seconds=settings.platform_timeout_seconds,
        )

    if populator is None:
        if content_generator is None:
            if settings.content_generator_url:
                content_generator = HttpContentGenerator(
                    settings.content_generator_url,
                    settings.content_generator_timeout_seconds,
                    max_attempts=settings.platform_max_attempts,
                    backoff_seconds=settings.platform_backoff_seconds,
                )
            else:
                content_generator = TemplateContentGenerator()
        populator = build_store_populator(settings, content_generator)

    jobs = JobStateMachine(
        repository,
        quota_guard,
        handoff,
        populator,
        notifier or WebhookNotifier(settings.webhook_timeout_seconds),
        auto_populate_on_authorize=settings.auto_populate_on_authorize,
        population_lease=timedelta(seconds=settings.population_lease_seconds),
    )
    if dispatcher is None:
        dispatcher = build_task_dispatcher(settings, runner=jobs.execute_population)
    jobs.dispatcher = dispatcher

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        repository=repository,
        quota_guard=quota_guard,
        handoff=handoff,
        dispatcher=dispatcher,
        jobs=jobs,
        admin_token_verifier=admin_token_verifier or build_admin_token_verifier(settings),
        task_token_verifier=task_token_verifier or build_task_token_verifier(settings),
    )
