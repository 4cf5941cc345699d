"""
Retry Failed Webhooks Handler.
Triggered by EventBridge scheduler (e.g. every 5 minutes).

1. Re-delivers FAILED records with attempts left (batches of 100)
2. Delivers PENDING records whose queue hand-off was lost
"""
from shared.config import config
from shared.logging import logger
from shared.services import get_services


def handler(event, context):
    event = event or {}
    dispatcher = get_services().dispatcher

    max_attempts = int(event.get('maxAttempts', config.WEBHOOK_MAX_ATTEMPTS))
    retried = dispatcher.retry_failed(max_attempts=max_attempts)
    pending = dispatcher.deliver_stale_pending()

    logger.info(f"Webhook sweep: retried={retried} pending={pending}")
    return {'retried': retried, 'pending': pending}
