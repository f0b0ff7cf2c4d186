"""
Realtime bill events.

Events are pushed through the Channels layer to two groups: one per bill
(``billing.bill.<id>``) and one for everyone watching the billing desk
(``billing.updates``).  Publishing is always deferred until the writing
transaction commits, so listeners never see a payment that was rolled
back.
"""
import logging
from functools import partial
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)

UPDATES_GROUP = 'billing.updates'

PAYMENT_RECORDED = 'payment_recorded'
BILL_STATUS_CHANGED = 'bill_status_changed'
BILL_CREATED = 'bill_created'
BILL_UPDATED = 'bill_updated'
BILL_DELETED = 'bill_deleted'


def bill_group(bill_id: int) -> str:
    return f'billing.bill.{bill_id}'


def publish(event: str, bill_id: int, data: Optional[Dict[str, Any]] = None) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    payload = {
        'type': 'billing.event',
        'event': event,
        'billId': bill_id,
        'timestamp': timezone.now().isoformat(),
        **(data or {}),
    }
    for group in (bill_group(bill_id), UPDATES_GROUP):
        async_to_sync(channel_layer.group_send)(group, payload)
    logger.debug('published %s for bill %s', event, bill_id)


def publish_on_commit(event: str, bill_id: int, data: Optional[Dict[str, Any]] = None) -> None:
    # robust: a broken channel layer must not turn a committed write into an error
    transaction.on_commit(partial(publish, event, bill_id, data), robust=True)
