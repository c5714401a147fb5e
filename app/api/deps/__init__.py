"""API dependencies - re-exports from submodules."""

from .billing import (
    Dispatcher,
    Processor,
    WebhookVerifier,
    get_dispatcher,
    get_processor,
    get_webhook_verifier,
    require_stripe,
    verify_cron_secret,
)

__all__ = [
    "Dispatcher",
    "Processor",
    "WebhookVerifier",
    "get_dispatcher",
    "get_processor",
    "get_webhook_verifier",
    "require_stripe",
    "verify_cron_secret",
]
