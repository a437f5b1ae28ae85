# coding: utf-8
"""
Sentry configuration for error monitoring
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT


# Keys whose values never leave the process
SENSITIVE_KEYS = ("bot_token", "api_key", "rpc_password", "authorization", "x-cg-demo-api-key")


def init_sentry() -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured

    Returns:
        True when Sentry is active
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                AioHttpIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")
    return True


def before_send_hook(event, hint):
    """Drop KeyboardInterrupt and scrub credentials from request headers"""
    if 'exc_info' in hint:
        _, exc_value, _ = hint['exc_info']
        if isinstance(exc_value, KeyboardInterrupt):
            return None

    request = event.get('request')
    if request:
        headers = request.get('headers', {})
        for key in list(headers):
            if key.lower() in SENSITIVE_KEYS:
                headers[key] = '[Filtered]'

    return event


def set_user_context(user_id: int, username: str = None):
    """Attach the Telegram user to subsequent Sentry events"""
    sentry_sdk.set_user({
        "id": str(user_id),
        "username": username or f"user_{user_id}"
    })
