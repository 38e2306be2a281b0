"""
Midtrans payment gateway client.

Only the backend talks to Midtrans: the server key is sent as HTTP basic auth
(base64 of "<server_key>:") and is never exposed to the frontend.
"""

import base64
import hashlib
import hmac
from collections import namedtuple
from datetime import datetime, timedelta, timezone

import requests
from flask import current_app

from errors import GatewayRejected, GatewayUnavailable
from models import utc_now

# Midtrans reports times as Asia/Jakarta wall clock
JAKARTA_TZ = timezone(timedelta(hours=7))
MIDTRANS_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

TransactionStatus = namedtuple(
    'TransactionStatus',
    ['order_id', 'transaction_status', 'gross_amount', 'fraud_status', 'observed_at', 'raw']
)


def parse_gateway_time(value):
    """Parse a Midtrans timestamp into an aware UTC datetime, None if unparseable."""
    if not value:
        return None
    try:
        local = datetime.strptime(str(value), MIDTRANS_TIME_FORMAT)
    except ValueError:
        return None
    return local.replace(tzinfo=JAKARTA_TZ).astimezone(timezone.utc)


def observed_at_from(payload, default=None):
    """Latest gateway-side timestamp in a status payload or notification."""
    candidates = [payload.get('transaction_time'), payload.get('settlement_time')]
    for refund in payload.get('refunds') or []:
        candidates.append(refund.get('refund_time'))
    parsed = [ts for ts in (parse_gateway_time(c) for c in candidates) if ts]
    if parsed:
        return max(parsed)
    return default


def to_transaction_status(payload, order_id=None, default_observed_at=None):
    return TransactionStatus(
        order_id=payload.get('order_id') or order_id,
        transaction_status=str(payload.get('transaction_status') or '').lower(),
        gross_amount=payload.get('gross_amount'),
        fraud_status=(str(payload['fraud_status']).lower() if payload.get('fraud_status') else None),
        observed_at=observed_at_from(payload, default_observed_at),
        raw=payload
    )


def verify_signature(notification, server_key):
    """Midtrans signature: SHA512(order_id + status_code + gross_amount + server_key)"""
    signature_key = notification.get('signature_key')
    if not signature_key or not server_key:
        return False
    expected = hashlib.sha512(
        f"{notification.get('order_id', '')}{notification.get('status_code', '')}"
        f"{notification.get('gross_amount', '')}{server_key}".encode()
    ).hexdigest()
    return hmac.compare_digest(signature_key, expected)


class MidtransGateway:
    """Thin client over the Midtrans Core (status) and Snap APIs"""

    SANDBOX_API_URL = 'https://api.sandbox.midtrans.com'
    PRODUCTION_API_URL = 'https://api.midtrans.com'
    SANDBOX_SNAP_URL = 'https://app.sandbox.midtrans.com/snap/v1/transactions'
    PRODUCTION_SNAP_URL = 'https://app.midtrans.com/snap/v1/transactions'

    def __init__(self, server_key, is_production=False, timeout=10):
        self.server_key = server_key or ''
        self.is_production = is_production
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            server_key=config.get('MIDTRANS_SERVER_KEY', ''),
            is_production=config.get('MIDTRANS_IS_PRODUCTION', False),
            timeout=config.get('MIDTRANS_TIMEOUT', 10)
        )

    @property
    def api_url(self):
        return self.PRODUCTION_API_URL if self.is_production else self.SANDBOX_API_URL

    @property
    def snap_url(self):
        return self.PRODUCTION_SNAP_URL if self.is_production else self.SANDBOX_SNAP_URL

    def _headers(self):
        auth_string = base64.b64encode(f"{self.server_key}:".encode()).decode()
        return {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'Authorization': f'Basic {auth_string}'
        }

    def fetch_transaction_status(self, order_id):
        """Read-only status check.

        Raises GatewayUnavailable on timeouts, connection errors and 5xx, and
        GatewayRejected on 4xx. Midtrans answers unknown orders with HTTP 200
        and status_code "404" in the body, so the body code is checked too.
        """
        url = f"{self.api_url}/v2/{order_id}/status"
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.Timeout:
            current_app.logger.warning(f'Midtrans status timeout for order {order_id}')
            raise GatewayUnavailable('Payment gateway timeout', order_id=order_id)
        except requests.exceptions.RequestException as e:
            current_app.logger.warning(f'Midtrans connection error for order {order_id}: {e}')
            raise GatewayUnavailable('Payment gateway tidak dapat dihubungi', order_id=order_id)

        if response.status_code >= 500:
            raise GatewayUnavailable(f'Payment gateway error HTTP {response.status_code}', order_id=order_id)
        if response.status_code >= 400:
            raise GatewayRejected(f'Payment gateway menolak HTTP {response.status_code}', order_id=order_id)

        try:
            data = response.json()
        except ValueError:
            raise GatewayUnavailable('Respon payment gateway tidak valid', order_id=order_id)

        body_code = str(data.get('status_code', '200'))
        if body_code.startswith('5'):
            raise GatewayUnavailable(f'Payment gateway error {body_code}', order_id=order_id)
        if body_code.startswith('4') and body_code != '407':  # 407 = expired transaction
            current_app.logger.info(
                f"Midtrans rejected order {order_id}: {body_code} {data.get('status_message')}"
            )
            raise GatewayRejected(data.get('status_message') or 'Transaksi tidak ditemukan', order_id=order_id)
        if not data.get('transaction_status'):
            raise GatewayRejected('Respon payment gateway tanpa transaction_status', order_id=order_id)

        return to_transaction_status(data, order_id=order_id, default_observed_at=utc_now())

    def create_snap_token(self, order):
        """Generate Midtrans Snap token for checkout, None when the gateway fails"""
        item_details = []
        for item in order.items:
            item_details.append({
                'id': str(item.id),
                'price': int(item.price),
                'quantity': item.quantity,
                'name': item.product_name[:50]  # Midtrans limits name to 50 chars
            })

        customer_details = {'first_name': order.customer_name or 'Customer'}
        if order.customer_email:
            customer_details['email'] = order.customer_email
        if order.customer_phone:
            customer_details['phone'] = order.customer_phone

        payload = {
            'transaction_details': {
                'order_id': order.id,
                'gross_amount': int(order.total_amount)
            },
            'item_details': item_details,
            'customer_details': customer_details
        }

        try:
            response = requests.post(self.snap_url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f'Midtrans Snap connection error for order {order.id}: {e}')
            return None

        if response.status_code == 201:
            return response.json().get('token')
        current_app.logger.error(f'Midtrans Snap error for order {order.id}: {response.status_code} - {response.text}')
        return None


def get_gateway():
    """Gateway bound to the current app, created from config on first use."""
    gateway = current_app.extensions.get('midtrans_gateway')
    if gateway is None:
        gateway = MidtransGateway.from_config(current_app.config)
        current_app.extensions['midtrans_gateway'] = gateway
    return gateway
