"""
Payment status reconciliation.

Local payment_status is a projection of the last observed Midtrans
transaction_status. Status only moves forward along FORWARD_TRANSITIONS, and
every write is a compare-and-swap against the pre-image the decision was made
on, so a stale gateway response can never undo a newer one.
"""

from flask import current_app
from sqlalchemy import update

from activity import log_activity
from errors import (
    ConcurrentModification, GatewayRejected, GatewayUnavailable, InvalidTransition,
    OrderNotFound, ReconciliationDeferred, ReconciliationInvalid,
)
from midtrans_client import get_gateway, to_transaction_status
from models import (
    db, Order, as_utc, utc_now,
    PAYMENT_CANCELLED, PAYMENT_EXPIRED, PAYMENT_FAILED, PAYMENT_PAID,
    PAYMENT_PENDING, PAYMENT_REFUNDED,
)

# Midtrans transaction_status -> local payment_status ('capture' depends on fraud_status)
STATUS_MAP = {
    'settlement': PAYMENT_PAID,
    'pending': PAYMENT_PENDING,
    'deny': PAYMENT_FAILED,
    'cancel': PAYMENT_CANCELLED,
    'expire': PAYMENT_EXPIRED,
    'refund': PAYMENT_REFUNDED,
    'partial_refund': PAYMENT_REFUNDED,
}

FORWARD_TRANSITIONS = {
    PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_EXPIRED, PAYMENT_CANCELLED},
    PAYMENT_PAID: {PAYMENT_REFUNDED},
}


def map_transaction_status(transaction_status, fraud_status=None):
    """Map a gateway status to the local enum, None when unknown."""
    status = (transaction_status or '').lower()
    if status == 'capture':
        if (fraud_status or '').lower() == 'challenge':
            return PAYMENT_PENDING
        return PAYMENT_PAID
    return STATUS_MAP.get(status)


def is_forward_transition(old_status, new_status):
    return new_status in FORWARD_TRANSITIONS.get(old_status, ())


class ReconciliationResult:
    def __init__(self, order_id, old_status, new_status, transaction_status, written=False, stale=False):
        self.order_id = order_id
        self.old_status = old_status
        self.new_status = new_status
        self.transaction_status = transaction_status
        self.written = written
        self.stale = stale

    @property
    def changed(self):
        return self.old_status != self.new_status

    def to_dict(self):
        return {
            'order_id': self.order_id,
            'old': self.old_status,
            'new': self.new_status,
            'payment_status': self.new_status,
            'transaction_status': self.transaction_status,
            'changed': self.changed,
            'written': self.written,
            'stale': self.stale
        }

    def __repr__(self):
        return f'<ReconciliationResult {self.order_id} {self.old_status}->{self.new_status}>'


def _plan_update(order, observation):
    """Decide what to write for an observation.

    Returns (values, stale); values is None when nothing should be written.
    Raises ReconciliationInvalid for unknown gateway statuses and
    InvalidTransition for backward moves.
    """
    new_status = map_transaction_status(observation.transaction_status, observation.fraud_status)
    if new_status is None:
        raise ReconciliationInvalid(
            f'Status gateway tidak dikenal: {observation.transaction_status}',
            order_id=order.id, transaction_status=observation.transaction_status
        )

    old_status = order.payment_status
    if new_status != old_status and not is_forward_transition(old_status, new_status):
        current_app.logger.warning(
            f'Rejected payment transition for order {order.id}: {old_status} -> {new_status} '
            f'(gateway {observation.transaction_status})'
        )
        raise InvalidTransition(
            f'Status pembayaran tidak boleh berubah dari {old_status} ke {new_status}',
            order_id=order.id, payment_status=old_status, attempted_status=new_status,
            transaction_status=observation.transaction_status
        )

    if new_status == old_status and observation.transaction_status == order.transaction_status:
        return None, False

    stored_at = as_utc(order.payment_observed_at)
    observed_at = as_utc(observation.observed_at)
    if stored_at and observed_at and observed_at < stored_at:
        current_app.logger.info(
            f'Ignoring stale gateway observation for order {order.id}: '
            f'{observation.transaction_status} at {observed_at.isoformat()} < {stored_at.isoformat()}'
        )
        return None, True

    values = {
        'payment_status': new_status,
        'transaction_status': observation.transaction_status,
        'fraud_status': observation.fraud_status,
        'payment_observed_at': observed_at or utc_now(),
        'updated_at': utc_now(),
    }
    return values, False


def _matches(column, value):
    return column.is_(None) if value is None else column == value


def _compare_and_swap(order_id, expected_status, expected_transaction_status, values):
    """Single-row update guarded by the payment pre-image. True when the row was written."""
    stmt = (
        update(Order)
        .where(Order.id == order_id)
        .where(Order.payment_status == expected_status)
        .where(_matches(Order.transaction_status, expected_transaction_status))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def apply_observation(order, observation, source='sync', user=None):
    """Apply a gateway observation to an order, retrying once on a lost race."""
    order_id = order.id
    for attempt in range(2):
        old_status = order.payment_status
        old_transaction_status = order.transaction_status
        values, stale = _plan_update(order, observation)
        if values is None:
            return ReconciliationResult(order_id, old_status, old_status, old_transaction_status, stale=stale)

        if _compare_and_swap(order_id, old_status, old_transaction_status, values):
            if values['payment_status'] != old_status:
                log_activity(
                    f'payment_{source}',
                    f"Status pembayaran {old_status} -> {values['payment_status']} "
                    f"(gateway: {observation.transaction_status})",
                    user=user, order_id=order_id
                )
            db.session.commit()
            db.session.refresh(order)
            current_app.logger.info(
                f"Order {order_id} payment {old_status} -> {values['payment_status']} "
                f"via {source} (gateway {observation.transaction_status})"
            )
            return ReconciliationResult(
                order_id, old_status, values['payment_status'], observation.transaction_status, written=True
            )

        current_app.logger.info(f'Payment compare-and-swap missed for order {order_id} (attempt {attempt + 1})')
        db.session.rollback()
        order = Order.query.filter_by(id=order_id).first()
        if order is None:
            raise OrderNotFound(order_id=order_id)

    raise ConcurrentModification(order_id=order_id)


def reconcile_payment(order_id, gateway=None, user=None):
    """Sync one order's payment status from the gateway."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)

    gateway = gateway or get_gateway()
    try:
        observation = gateway.fetch_transaction_status(order_id)
    except GatewayUnavailable as e:
        current_app.logger.warning(f'Reconciliation deferred for order {order_id}: {e.message}')
        raise ReconciliationDeferred(order_id=order_id) from e
    except GatewayRejected as e:
        current_app.logger.warning(f'Order {order_id} flagged for manual review: {e.message}')
        raise ReconciliationInvalid(order_id=order_id, gateway_message=e.message) from e

    return apply_observation(order, observation, source='sync', user=user)


def apply_notification(notification):
    """Apply a (signature-verified) Midtrans webhook notification."""
    order_id = notification.get('order_id')
    order = db.session.get(Order, order_id) if order_id else None
    if order is None:
        raise OrderNotFound(order_id=order_id)
    observation = to_transaction_status(notification, order_id=order_id, default_observed_at=utc_now())
    return apply_observation(order, observation, source='webhook')


def sync_pending_payments(limit=50, gateway=None, user=None):
    """Reconcile pending orders, oldest first. Failures are collected, never raised."""
    summary = {'synced': [], 'unchanged': [], 'deferred': [], 'invalid': [], 'rejected': []}
    order_ids = [
        row.id for row in
        db.session.query(Order.id)
        .filter(Order.payment_status == PAYMENT_PENDING)
        .order_by(Order.created_at.asc())
        .limit(limit)
        .all()
    ]
    gateway = gateway or get_gateway()
    for order_id in order_ids:
        try:
            result = reconcile_payment(order_id, gateway=gateway, user=user)
        except ReconciliationDeferred:
            summary['deferred'].append(order_id)
            continue
        except ReconciliationInvalid:
            summary['invalid'].append(order_id)
            continue
        except (InvalidTransition, ConcurrentModification, OrderNotFound) as e:
            summary['rejected'].append({'order_id': order_id, 'code': e.code})
            continue
        if result.written:
            summary['synced'].append(result.to_dict())
        else:
            summary['unchanged'].append(order_id)
    return summary
