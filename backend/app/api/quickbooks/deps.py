from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.services import AppServices, get_services
from .client import QuickBooksClient
from .session import QBOSessionManager
from .token_store import QuickBooksTokenStore


def get_token_store(
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> QuickBooksTokenStore:
    return QuickBooksTokenStore(db, services.get_encryption_key())


def get_qb_client(
    token_store: QuickBooksTokenStore = Depends(get_token_store),
    services: AppServices = Depends(get_services),
) -> QuickBooksClient:
    return QuickBooksClient(
        services.get_qb_config(),
        token_store,
        transport=services.qb_transport,
        auth_client_factory=services.qb_auth_client_factory,
    )


def get_session_manager(
    token_store: QuickBooksTokenStore = Depends(get_token_store),
    services: AppServices = Depends(get_services),
) -> QBOSessionManager:
    def client_factory() -> QuickBooksClient:
        return QuickBooksClient(
            services.get_qb_config(),
            token_store,
            transport=services.qb_transport,
            auth_client_factory=services.qb_auth_client_factory,
        )

    return QBOSessionManager(token_store, client_factory)
