from dependency_injector import containers, providers

from localhy.config import Settings
from localhy.database.session import get_db
from localhy.services.change_feed import ChangeFeed
from localhy.services.credit_service import CreditService
from localhy.services.notification_service import NotificationService
from localhy.services.paid_action_service import PaidActionService
from localhy.services.payment_webhook_service import PaymentWebhookService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class RepositoryModule(containers.DeclarativeContainer):
    """Database session."""

    get_db = providers.Resource(get_db)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies."""

    config = providers.DependenciesContainer()
    repositories = providers.DependenciesContainer()

    # one feed per process so subscriptions outlive a request
    change_feed = providers.Singleton(ChangeFeed, settings=config.config)

    credit_service = providers.Factory(
        CreditService, db=repositories.get_db, settings=config.config, change_feed=change_feed
    )
    notification_service = providers.Factory(
        NotificationService, db=repositories.get_db, change_feed=change_feed
    )
    paid_action_service = providers.Factory(
        PaidActionService, db=repositories.get_db, settings=config.config, change_feed=change_feed
    )
    payment_webhook_service = providers.Factory(
        PaymentWebhookService, db=repositories.get_db, settings=config.config, change_feed=change_feed
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "localhy.routers.health_router",
            "localhy.routers.credit_router",
            "localhy.routers.paid_action_router",
            "localhy.routers.webhook_router",
            "localhy.routers.notification_router",
        ],
    )

    config = providers.Container(ConfigModule)
    repositories = providers.Container(RepositoryModule)
    services = providers.Container(
        ServiceModule, config=config, repositories=repositories
    )
