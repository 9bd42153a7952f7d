from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
from fastapi import Request
from openai import AsyncOpenAI

from . import config
from app.api.assistant.backends import MockInvoiceBackend
from app.api.quickbooks.client import QuickBooksConfig
from app.utils.encryption import get_encryption_key


@dataclass
class AppServices:
    """
    Process-wide collaborators, built once in ``create_app`` and read from
    ``request.app.state.services`` by the request dependencies.

    Anything left as ``None`` is constructed from the environment the first
    time it is needed.
    """

    qb_config: Optional[QuickBooksConfig] = None
    qb_transport: Optional[httpx.AsyncBaseTransport] = None
    qb_auth_client_factory: Optional[Callable[[], Any]] = None
    openai_client: Optional[Any] = None
    encryption_key: Optional[str] = None
    mock_invoices: Optional[MockInvoiceBackend] = None

    def get_qb_config(self) -> QuickBooksConfig:
        if self.qb_config is None:
            self.qb_config = QuickBooksConfig.from_env()
        return self.qb_config

    def get_encryption_key(self) -> str:
        if self.encryption_key is None:
            self.encryption_key = get_encryption_key()
        return self.encryption_key

    def get_openai_client(self):
        if self.openai_client is None:
            self.openai_client = AsyncOpenAI(
                api_key=config.OPENAI_API_KEY or config.require("OPENAI_API_KEY")
            )
        return self.openai_client

    def get_mock_invoices(self) -> MockInvoiceBackend:
        # demo data lives for the lifetime of the process
        if self.mock_invoices is None:
            self.mock_invoices = MockInvoiceBackend()
        return self.mock_invoices


def get_services(request: Request) -> AppServices:
    return request.app.state.services
