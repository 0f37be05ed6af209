"""Async client for disposable-email REST services.

Public API re-exported here for convenience::

    from tempmail_client import ClientConfig, TempMailClient
"""

from .api_client import ApiClient, ApiRequest, AuthMode
from .client import TempMailClient
from .config import ClientConfig, HttpConfig, PollerConfig, RetryConfig, StorageConfig
from .endpoints import MailApi
from .errors import (
    AccountNotFoundError,
    ApiError,
    AuthExpiredError,
    CredentialsMissingError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidRequestError,
    MethodNotAllowedError,
    NotFoundError,
    RateLimitedError,
    TempMailError,
    TokenInvalidError,
    TransientNetworkError,
    UnavailableError,
)
from .logging import setup_logging
from .models import (
    Account,
    Domain,
    Message,
    MessageDetail,
    MessagePage,
    ProviderConfig,
    SessionState,
    TokenGrant,
)
from .poller import MailPoller
from .providers import ProviderRegistry
from .retry import with_retry
from .session import SessionStore
from .storage import JsonFileStorage, MemoryStorage, Storage
from .tokens import TokenManager

__all__ = [
    "Account",
    "AccountNotFoundError",
    "ApiClient",
    "ApiError",
    "ApiRequest",
    "AuthExpiredError",
    "AuthMode",
    "ClientConfig",
    "CredentialsMissingError",
    "Domain",
    "ForbiddenError",
    "HttpConfig",
    "InvalidCredentialsError",
    "InvalidRequestError",
    "JsonFileStorage",
    "MailApi",
    "MailPoller",
    "MemoryStorage",
    "Message",
    "MessageDetail",
    "MessagePage",
    "MethodNotAllowedError",
    "NotFoundError",
    "PollerConfig",
    "ProviderConfig",
    "ProviderRegistry",
    "RateLimitedError",
    "RetryConfig",
    "SessionState",
    "SessionStore",
    "Storage",
    "StorageConfig",
    "TempMailClient",
    "TempMailError",
    "TokenGrant",
    "TokenInvalidError",
    "TokenManager",
    "TransientNetworkError",
    "UnavailableError",
    "setup_logging",
    "with_retry",
]
