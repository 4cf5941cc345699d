"""
Deliver Webhook Handler.
Triggered by SQS (Webhook Queue). Each message body is { "eventId": "..." }.

Delivery failures are recorded on the DeliveryRecord and picked up by the
retry sweep, so messages are never returned to the queue.
"""
from shared.logging import logger
from shared.services import get_services
from shared.sqs import parse_records


def handler(event, context):
    dispatcher = get_services().dispatcher

    delivered = 0
    failed = 0
    for body in parse_records(event):
        event_id = body.get('eventId')
        if not event_id:
            logger.warning(f"SQS message without eventId: {body}")
            continue
        if dispatcher.deliver(event_id):
            delivered += 1
        else:
            failed += 1

    logger.info(f"Webhook batch: {delivered} delivered, {failed} failed")
    return {'delivered': delivered, 'failed': failed}
