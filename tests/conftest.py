import os

os.environ['FLASK_CONFIG'] = 'testing'

import hashlib

import pytest
from flask import has_app_context

from app import app as flask_app
from errors import GatewayRejected
from midtrans_client import TransactionStatus
from models import (
    db, User, Outlet, Location, Order, OrderItem, utc_now,
    ROLE_ADMIN, ROLE_DELIVERYMAN, ROLE_OUTLET_STAFF, OUTLET_ACTIVE, OUTLET_INACTIVE,
)

ADMIN_PASSWORD = 'Admin123'
KURIR_PASSWORD = 'Kurir123'


class FakeGateway:
    """Stands in for MidtransGateway; statuses are keyed by order id."""

    def __init__(self):
        self.statuses = {}
        self.calls = []
        self.snap_token = 'snap-token-123'

    def set_status(self, order_id, transaction_status, fraud_status=None, observed_at=None,
                   gross_amount='50000.00'):
        self.statuses[order_id] = TransactionStatus(
            order_id=order_id,
            transaction_status=transaction_status,
            gross_amount=gross_amount,
            fraud_status=fraud_status,
            observed_at=observed_at or utc_now(),
            raw={'order_id': order_id, 'transaction_status': transaction_status}
        )

    def fail(self, order_id, error):
        self.statuses[order_id] = error

    def fetch_transaction_status(self, order_id):
        self.calls.append(order_id)
        result = self.statuses.get(order_id)
        if result is None:
            raise GatewayRejected('Transaction doesn\'t exist.', order_id=order_id)
        if isinstance(result, Exception):
            raise result
        return result

    def create_snap_token(self, order):
        return self.snap_token


def seed_data():
    """Outlets Branch Y (active) and Branch X (inactive) plus one user per role."""
    db.session.add_all([
        Outlet(id='outlet_bonbin', name='Branch Y', location_alias='Bonbin',
               address='Jl. Bonbin 1', status=OUTLET_ACTIVE),
        Outlet(id='outlet_x', name='Branch X', location_alias='Kota',
               address='Jl. Kota 2', status=OUTLET_INACTIVE),
        Location(name='Bonbin'),
        Location(name='Kota'),
    ])

    users = [
        ('admin', ADMIN_PASSWORD, ROLE_ADMIN, None, True),
        ('kurir_bonbin', KURIR_PASSWORD, ROLE_DELIVERYMAN, 'outlet_bonbin', True),
        ('kurir_bebas', KURIR_PASSWORD, ROLE_DELIVERYMAN, None, True),
        ('kurir_off', KURIR_PASSWORD, ROLE_DELIVERYMAN, 'outlet_bonbin', False),
        ('staff_bonbin', KURIR_PASSWORD, ROLE_OUTLET_STAFF, 'outlet_bonbin', True),
    ]
    for username, password, role, outlet_id, is_active in users:
        user = User(username=username, name=username.title(), role=role,
                    outlet_id=outlet_id, is_active=is_active)
        user.set_password(password)
        db.session.add(user)
    db.session.commit()

    return {u.username: u.id for u in User.query.all()}


def _create_order(order_id, payment_status='pending', transaction_status=None,
                  payment_observed_at=None, items=None):
    order = Order(
        id=order_id,
        customer_name='Budi',
        customer_phone='08123456789',
        delivery_location='Bonbin',
        shipping_area='dalam-kota',
        payment_status=payment_status,
        transaction_status=transaction_status,
        payment_observed_at=payment_observed_at
    )
    db.session.add(order)
    for name, price, quantity in items or [('Nasi Goreng', 25000, 2)]:
        db.session.add(OrderItem(order_id=order_id, product_name=name, price=price,
                                 quantity=quantity, subtotal=price * quantity))
    db.session.flush()
    order.calculate_total()
    db.session.commit()
    return order_id


@pytest.fixture
def app(tmp_path):
    flask_app.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')
    with flask_app.app_context():
        db.create_all()
        flask_app.extensions['midtrans_gateway'] = FakeGateway()
        flask_app.config['SEEDED_USERS'] = seed_data()

    yield flask_app

    with flask_app.app_context():
        db.session.remove()
        db.drop_all()
    flask_app.extensions.pop('midtrans_gateway', None)


@pytest.fixture
def ctx(app):
    """App context for tests calling the service functions directly"""
    with app.app_context():
        yield app


@pytest.fixture
def users(app):
    return app.config['SEEDED_USERS']


@pytest.fixture
def gateway(app):
    return app.extensions['midtrans_gateway']


@pytest.fixture
def order_factory(app):
    def factory(order_id='ORDER-1', **fields):
        if has_app_context():
            return _create_order(order_id, **fields)
        with app.app_context():
            return _create_order(order_id, **fields)
    return factory


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password):
    return client.post('/api/auth/login', json={'username': username, 'password': password})


@pytest.fixture
def admin_client(app):
    client = app.test_client()
    response = login(client, 'admin', ADMIN_PASSWORD)
    assert response.status_code == 200
    return client


@pytest.fixture
def kurir_client(app):
    client = app.test_client()
    response = login(client, 'kurir_bonbin', KURIR_PASSWORD)
    assert response.status_code == 200
    return client


def sign_notification(notification, server_key=None):
    server_key = server_key or flask_app.config['MIDTRANS_SERVER_KEY']
    raw = f"{notification['order_id']}{notification['status_code']}{notification['gross_amount']}{server_key}"
    notification['signature_key'] = hashlib.sha512(raw.encode()).hexdigest()
    return notification


@pytest.fixture
def staff_client(app):
    client = app.test_client()
    response = login(client, 'staff_bonbin', KURIR_PASSWORD)
    assert response.status_code == 200
    return client
