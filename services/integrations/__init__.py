# Square integration: OAuth, credential storage, sync and webhooks
from .oauth import (
    MissingCredentialsError,
    OAuthStateManager,
    build_authorization_url,
    complete_authorization,
    refresh_access_token,
)
from .square import SquareAPIError, SquareClient, build_square_client
from .sync_service import SyncService, get_valid_tokens, run_initial_sync_task, sync_merchant_task
from .token_store import (
    StoredTokens,
    delete_tokens,
    get_connection,
    get_tokens,
    get_tokens_by_square_merchant,
    is_token_expired,
    save_tokens,
)
from .webhooks import (
    SIGNATURE_HEADER,
    handle_recorded_event,
    process_event,
    record_event,
    replay_pending_events,
    verify_signature,
)

__all__ = [
    "MissingCredentialsError",
    "OAuthStateManager",
    "build_authorization_url",
    "complete_authorization",
    "refresh_access_token",
    "SquareAPIError",
    "SquareClient",
    "build_square_client",
    "SyncService",
    "get_valid_tokens",
    "run_initial_sync_task",
    "sync_merchant_task",
    "StoredTokens",
    "delete_tokens",
    "get_connection",
    "get_tokens",
    "get_tokens_by_square_merchant",
    "is_token_expired",
    "save_tokens",
    "SIGNATURE_HEADER",
    "handle_recorded_event",
    "process_event",
    "record_event",
    "replay_pending_events",
    "verify_signature",
]
