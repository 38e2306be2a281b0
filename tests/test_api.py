import re

import app as app_module
from assignment import assign_order
from conftest import sign_notification
from errors import GatewayRejected, GatewayUnavailable
from models import db, AdminActivityLog, Order, OrderItem, Outlet, User


def notification_for(order_id, transaction_status, **extra):
    notification = {
        'order_id': order_id,
        'status_code': '200',
        'gross_amount': '50000.00',
        'transaction_status': transaction_status,
        'transaction_time': '2024-05-01 10:00:00',
    }
    notification.update(extra)
    return sign_notification(notification)


def test_admin_endpoints_require_login(client):
    response = client.get('/api/assignment-options')

    assert response.status_code == 401
    assert response.get_json() == {
        'success': False,
        'error': 'Silakan login terlebih dahulu',
        'code': 'AUTHENTICATION_REQUIRED'
    }


def test_admin_endpoints_require_admin_role(kurir_client):
    response = kurir_client.post('/api/admin/orders/ORDER-1/sync-payment-status')

    assert response.status_code == 403
    assert response.get_json()['code'] == 'PERMISSION_DENIED'


def test_sync_payment_status(admin_client, gateway, order_factory):
    order_factory('ORDER-1')
    gateway.set_status('ORDER-1', 'settlement')

    response = admin_client.post('/api/admin/orders/ORDER-1/sync-payment-status')

    assert response.status_code == 200
    data = response.get_json()
    assert data['success'] is True
    assert data['payment_status'] == 'paid'
    assert data['transaction_status'] == 'settlement'
    assert (data['old'], data['new'], data['changed']) == ('pending', 'paid', True)


def test_sync_payment_status_errors(admin_client, gateway, order_factory):
    order_factory('ORDER-DOWN')
    order_factory('ORDER-UNKNOWN')
    order_factory('ORDER-PAID', payment_status='paid', transaction_status='settlement')
    gateway.fail('ORDER-DOWN', GatewayUnavailable(order_id='ORDER-DOWN'))
    gateway.fail('ORDER-UNKNOWN', GatewayRejected(order_id='ORDER-UNKNOWN'))
    gateway.set_status('ORDER-PAID', 'pending')

    cases = [
        ('ORDER-NOPE', 404, 'ORDER_NOT_FOUND'),
        ('ORDER-DOWN', 503, 'RECONCILIATION_DEFERRED'),
        ('ORDER-UNKNOWN', 502, 'RECONCILIATION_INVALID'),
        ('ORDER-PAID', 422, 'INVALID_TRANSITION'),
    ]
    for order_id, status_code, code in cases:
        response = admin_client.post(f'/api/admin/orders/{order_id}/sync-payment-status')
        data = response.get_json()
        assert response.status_code == status_code, order_id
        assert data['success'] is False
        assert data['code'] == code
        assert data['error']


def test_assign_endpoint(admin_client, users, order_factory):
    order_factory('ORDER-1')

    response = admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bonbin'],
        'outletId': 'outlet_bonbin'
    })

    assert response.status_code == 200
    data = response.get_json()
    assert data['success'] is True
    assert data['assignment']['deliveryman_id'] == users['kurir_bonbin']
    assert data['assignment']['outlet_name'] == 'Branch Y'
    assert data['previous_assignment'] is None
    assert data['assignment_version'] == 1


def test_assign_endpoint_reassignment_flow(admin_client, users, order_factory):
    order_factory('ORDER-1')
    admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bonbin'], 'outletId': 'outlet_bonbin'
    })

    conflict = admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bebas'], 'outletId': 'outlet_bonbin'
    })
    assert conflict.status_code == 409
    assert conflict.get_json()['code'] == 'ALREADY_ASSIGNED'

    stale = admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bebas'], 'outletId': 'outlet_bonbin', 'force': True, 'expectedVersion': 0
    })
    assert stale.status_code == 409
    assert stale.get_json()['code'] == 'CONCURRENT_MODIFICATION'

    forced = admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bebas'], 'outletId': 'outlet_bonbin', 'force': True, 'expectedVersion': 1
    })
    assert forced.status_code == 200
    assert forced.get_json()['previous_assignment']['deliveryman_id'] == users['kurir_bonbin']

    history = admin_client.get('/api/admin/orders/ORDER-1/assignments').get_json()['assignments']
    assert [a['deliveryman_id'] for a in history] == [users['kurir_bebas'], users['kurir_bonbin']]


def test_assign_endpoint_errors(admin_client, app, users, order_factory):
    order_factory('ORDER-1')
    with app.app_context():
        db.session.add(Outlet(id='outlet_z', name='Branch Z', status='active'))
        db.session.commit()

    cases = [
        ('ORDER-NOPE', {'deliverymanId': users['kurir_bonbin'], 'outletId': 'outlet_bonbin'}, 404, 'ORDER_NOT_FOUND'),
        ('ORDER-1', {'deliverymanId': 'kurir_bonbin', 'outletId': 'outlet_bonbin'}, 422, 'INVALID_DELIVERYMAN'),
        ('ORDER-1', {'deliverymanId': users['admin'], 'outletId': 'outlet_bonbin'}, 422, 'INVALID_DELIVERYMAN'),
        ('ORDER-1', {'deliverymanId': users['kurir_bebas'], 'outletId': 'outlet_nowhere'}, 404, 'INVALID_OUTLET'),
        ('ORDER-1', {'deliverymanId': users['kurir_bebas'], 'outletId': 'outlet_x'}, 409, 'OUTLET_INACTIVE'),
        ('ORDER-1', {'deliverymanId': users['kurir_bonbin'], 'outletId': 'outlet_z'}, 409, 'OUTLET_MISMATCH'),
        ('ORDER-1', {}, 422, 'INVALID_DELIVERYMAN'),
    ]
    for order_id, body, status_code, code in cases:
        response = admin_client.post(f'/api/admin/orders/{order_id}/assign', json=body)
        assert response.status_code == status_code, body
        assert response.get_json()['code'] == code

    with app.app_context():
        order = db.session.get(Order, 'ORDER-1')
        assert order.assigned_deliveryman_id is None
        assert order.assignment_version == 0


def test_assignment_options_endpoint(admin_client):
    response = admin_client.get('/api/assignment-options')

    assert response.status_code == 200
    data = response.get_json()
    assert [o['name'] for o in data['outlets']] == ['Branch Y']
    assert [u['username'] for u in data['delivery_users']] == ['kurir_bebas', 'kurir_bonbin']
    assert data['delivery_users'][0]['outlet_name'] is None


def test_webhook_applies_settlement(client, app, order_factory):
    order_factory('ORDER-1')

    response = client.post('/api/payment/midtrans/callback', json=notification_for('ORDER-1', 'settlement'))

    assert response.status_code == 200
    data = response.get_json()
    assert data['success'] is True
    assert data['applied'] is True
    assert data['payment_status'] == 'paid'
    with app.app_context():
        assert db.session.get(Order, 'ORDER-1').payment_status == 'paid'


def test_webhook_rejects_bad_signature(client, app, order_factory):
    order_factory('ORDER-1')
    notification = notification_for('ORDER-1', 'settlement')
    notification['gross_amount'] = '1.00'

    response = client.post('/api/payment/midtrans/callback', json=notification)

    assert response.status_code == 401
    assert response.get_json()['code'] == 'INVALID_SIGNATURE'
    with app.app_context():
        assert db.session.get(Order, 'ORDER-1').payment_status == 'pending'


def test_webhook_without_signature(client, order_factory):
    order_factory('ORDER-1')
    notification = notification_for('ORDER-1', 'settlement')
    del notification['signature_key']

    response = client.post('/api/payment/midtrans/callback', json=notification)

    assert response.status_code == 401


def test_webhook_unknown_order(client):
    response = client.post('/api/payment/midtrans/callback', json=notification_for('ORDER-NOPE', 'settlement'))

    assert response.status_code == 404
    assert response.get_json()['code'] == 'ORDER_NOT_FOUND'


def test_webhook_acknowledges_backward_transition(client, app, order_factory):
    order_factory('ORDER-1', payment_status='paid', transaction_status='settlement')

    response = client.post('/api/payment/midtrans/callback', json=notification_for('ORDER-1', 'pending'))

    assert response.status_code == 200
    data = response.get_json()
    assert data['applied'] is False
    assert data['code'] == 'INVALID_TRANSITION'
    with app.app_context():
        assert db.session.get(Order, 'ORDER-1').payment_status == 'paid'


def test_webhook_invalid_payload(client):
    response = client.post('/api/payment/midtrans/callback', data='not json', content_type='text/plain')

    assert response.status_code == 400


def test_create_order(client, app, gateway):
    response = client.post('/api/orders', json={
        'customer_name': 'Siti',
        'customer_phone': '0811111111',
        'delivery_location': 'Bonbin',
        'items': [
            {'product_name': 'Ayam Bakar', 'price': 30000, 'quantity': 2},
            {'product_name': 'Es Jeruk', 'price': 8000},
        ]
    })

    assert response.status_code == 201
    data = response.get_json()
    order = data['order']
    assert re.match(r'^ORDER-\d{13}-[A-Z0-9]{5}$', order['id'])
    assert order['total_amount'] == 68000
    assert order['payment_status'] == 'pending'
    assert data['snap_token'] == gateway.snap_token
    assert len(order['items']) == 2

    fetched = client.get(f"/api/orders/{order['id']}")
    assert fetched.status_code == 200
    assert fetched.get_json()['order']['customer_name'] == 'Siti'


def test_create_order_without_snap_token(client, app, gateway):
    gateway.snap_token = None

    response = client.post('/api/orders', json={
        'customer_name': 'Siti',
        'items': [{'product_name': 'Ayam Bakar', 'price': 30000, 'quantity': 1}]
    })

    assert response.status_code == 201
    assert response.get_json()['snap_token'] is None
    with app.app_context():
        assert Order.query.count() == 1


def test_create_order_validation(client, app):
    bad_bodies = [
        {'items': [{'product_name': 'Ayam', 'price': 1000}]},
        {'customer_name': 'Siti', 'items': []},
        {'customer_name': 'Siti', 'items': [{'price': 1000}]},
        {'customer_name': 'Siti', 'items': [{'product_name': 'Ayam', 'price': 'mahal'}]},
        {'customer_name': 'Siti', 'items': [{'product_name': 'Ayam', 'price': 1000, 'quantity': 0}]},
    ]
    for body in bad_bodies:
        response = client.post('/api/orders', json=body)
        assert response.status_code == 400, body
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    with app.app_context():
        assert Order.query.count() == 0
        assert OrderItem.query.count() == 0


def test_get_missing_order(client):
    response = client.get('/api/orders/ORDER-NOPE')

    assert response.status_code == 404
    assert response.get_json()['code'] == 'ORDER_NOT_FOUND'


def test_admin_order_list_filters(admin_client, order_factory):
    order_factory('ORDER-1')
    order_factory('ORDER-2', payment_status='paid', transaction_status='settlement')

    data = admin_client.get('/api/admin/orders?payment_status=paid').get_json()
    assert [o['id'] for o in data['orders']] == ['ORDER-2']
    assert data['total'] == 1

    paged = admin_client.get('/api/admin/orders?per_page=1&page=2').get_json()
    assert paged['total'] == 2
    assert len(paged['orders']) == 1

    bad = admin_client.get('/api/admin/orders?payment_status=lunas')
    assert bad.status_code == 400


def test_admin_order_detail_includes_assignments(admin_client, users, order_factory):
    order_factory('ORDER-1')
    admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bonbin'], 'outletId': 'outlet_bonbin'
    })

    order = admin_client.get('/api/admin/orders/ORDER-1').get_json()['order']

    assert order['active_assignment']['deliveryman_id'] == users['kurir_bonbin']
    assert len(order['assignments']) == 1
    assert len(order['items']) == 1


def test_admin_delete_order_cascades(admin_client, app, users, order_factory):
    order_factory('ORDER-1')
    admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bonbin'], 'outletId': 'outlet_bonbin'
    })

    response = admin_client.delete('/api/admin/orders/ORDER-1')

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Order, 'ORDER-1') is None
        assert OrderItem.query.count() == 0
        assert AdminActivityLog.query.filter_by(activity_type='order_deleted', order_id='ORDER-1').count() == 1

    assert admin_client.delete('/api/admin/orders/ORDER-1').status_code == 404


def test_admin_activity_log(admin_client, users, order_factory):
    order_factory('ORDER-1')
    admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': users['kurir_bonbin'], 'outletId': 'outlet_bonbin'
    })

    activities = admin_client.get('/api/admin/activity?limit=10').get_json()['activities']

    assert activities[0]['activity_type'] == 'order_assigned'
    assert activities[0]['username'] == 'admin'
    assert any(a['activity_type'] == 'login' for a in activities)


def test_diagnostics_endpoint(admin_client):
    data = admin_client.get('/api/admin/diagnostics/assignments').get_json()

    assert data['success'] is True
    assert data['report']['deliverymen_without_outlet'] == ['kurir_bebas']


def test_create_user(admin_client, app):
    response = admin_client.post('/api/admin/users', json={
        'username': 'kurir_baru', 'password': 'Kurir456', 'name': 'Kurir Baru',
        'role': 'deliveryman', 'outlet_id': 'outlet_bonbin'
    })

    assert response.status_code == 201
    assert response.get_json()['user']['outlet_name'] == 'Branch Y'
    with app.app_context():
        user = User.query.filter_by(username='kurir_baru').first()
        assert user.check_password('Kurir456')
        assert user.force_password_change


def test_create_user_validation(admin_client):
    cases = [
        ({'username': 'kurir_bonbin', 'password': 'Kurir456', 'role': 'deliveryman'}, 409),
        ({'username': 'staff2', 'password': 'Staff456', 'role': 'outlet_staff'}, 400),
        ({'username': 'boss', 'password': 'Boss4567', 'role': 'owner'}, 400),
        ({'username': 'weak', 'password': 'weak', 'role': 'deliveryman'}, 400),
        ({'username': 'ghost', 'password': 'Ghost456', 'role': 'deliveryman', 'outlet_id': 'outlet_nowhere'}, 404),
    ]
    for body, status_code in cases:
        assert admin_client.post('/api/admin/users', json=body).status_code == status_code, body


def test_list_users_by_role(admin_client):
    users = admin_client.get('/api/admin/users?role=deliveryman').get_json()['users']

    assert [u['username'] for u in users] == ['kurir_bebas', 'kurir_bonbin', 'kurir_off']


def test_outlet_management(admin_client, client):
    created = admin_client.post('/api/admin/outlets', json={'name': 'Branch Z', 'address': 'Jl. Selatan 3'})
    assert created.status_code == 201
    assert created.get_json()['outlet']['id'] == 'outlet_branch_z'

    duplicate = admin_client.post('/api/admin/outlets', json={'name': 'Branch Z'})
    assert duplicate.status_code == 409

    deactivated = admin_client.post('/api/admin/outlets/outlet_branch_z/status', json={'status': 'inactive'})
    assert deactivated.get_json()['outlet']['status'] == 'inactive'

    assert admin_client.post('/api/admin/outlets/outlet_branch_z/status', json={'status': 'closed'}).status_code == 400
    assert admin_client.post('/api/admin/outlets/nowhere/status', json={'status': 'active'}).status_code == 404

    outlets = client.get('/api/outlets').get_json()['outlets']
    assert [o['name'] for o in outlets] == ['Branch X', 'Branch Y', 'Branch Z']


def test_locations(client):
    locations = client.get('/api/locations').get_json()['locations']

    assert [loc['name'] for loc in locations] == ['Bonbin', 'Kota']


def test_unknown_endpoint_returns_json(client):
    response = client.get('/api/does-not-exist')

    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_security_headers(client):
    response = client.get('/api/outlets')

    assert response.headers['X-Content-Type-Options'] == 'nosniff'
    assert response.headers['X-Frame-Options'] == 'SAMEORIGIN'


def test_unexpected_error_is_not_leaked(admin_client, monkeypatch):
    def broken():
        raise RuntimeError('database password is hunter2')

    monkeypatch.setattr(app_module, 'list_assignment_options', broken)

    response = admin_client.get('/api/assignment-options')

    assert response.status_code == 500
    data = response.get_json()
    assert data['code'] == 'INTERNAL_ERROR'
    assert 'hunter2' not in response.get_data(as_text=True)


def test_deliveryman_sees_own_orders(kurir_client, app, users, order_factory):
    for order_id in ('ORDER-1', 'ORDER-2', 'ORDER-3'):
        order_factory(order_id)
    with app.app_context():
        assign_order('ORDER-1', users['kurir_bonbin'], 'outlet_bonbin')
        assign_order('ORDER-2', users['kurir_bebas'], 'outlet_bonbin')

    response = kurir_client.get('/api/my/orders')

    assert response.status_code == 200
    data = response.get_json()
    assert [o['id'] for o in data['orders']] == ['ORDER-1']
    assert data['total'] == 1
    assert kurir_client.get('/api/my/orders/ORDER-1').get_json()['order']['id'] == 'ORDER-1'
    assert kurir_client.get('/api/my/orders/ORDER-2').status_code == 403
    assert kurir_client.get('/api/my/orders/ORDER-NOPE').status_code == 404


def test_outlet_staff_sees_outlet_orders(staff_client, app, users, order_factory):
    for order_id in ('ORDER-1', 'ORDER-2', 'ORDER-3'):
        order_factory(order_id)
    with app.app_context():
        db.session.add(Outlet(id='outlet_z', name='Branch Z', status='active'))
        db.session.commit()
        assign_order('ORDER-1', users['kurir_bonbin'], 'outlet_bonbin')
        assign_order('ORDER-2', users['kurir_bebas'], 'outlet_bonbin')
        assign_order('ORDER-3', users['kurir_bebas'], 'outlet_z')

    data = staff_client.get('/api/my/orders').get_json()

    assert sorted(o['id'] for o in data['orders']) == ['ORDER-1', 'ORDER-2']
    assert staff_client.get('/api/my/orders?payment_status=paid').get_json()['orders'] == []
    assert staff_client.get('/api/my/orders?payment_status=lunas').status_code == 400
    assert staff_client.get('/api/my/orders/ORDER-3').status_code == 403


def test_my_orders_is_not_for_admins(admin_client, client):
    assert admin_client.get('/api/my/orders').status_code == 403
    assert client.get('/api/my/orders').status_code == 401


def test_assign_endpoint_rejects_non_string_outlet(admin_client, app, users, order_factory):
    order_factory('ORDER-1')

    for outlet_id in (['outlet_bonbin', 'outlet_x'], {'id': 'outlet_bonbin'}, 7):
        response = admin_client.post('/api/admin/orders/ORDER-1/assign', json={
            'deliverymanId': users['kurir_bebas'], 'outletId': outlet_id
        })
        assert response.status_code == 404, outlet_id
        assert response.get_json()['code'] == 'INVALID_OUTLET'

    with app.app_context():
        assert db.session.get(Order, 'ORDER-1').assignment_version == 0


def test_assign_endpoint_unknown_deliveryman_is_not_found(admin_client, order_factory):
    order_factory('ORDER-1')

    response = admin_client.post('/api/admin/orders/ORDER-1/assign', json={
        'deliverymanId': 99999, 'outletId': 'outlet_bonbin'
    })

    assert response.status_code == 404
    assert response.get_json()['code'] == 'DELIVERYMAN_NOT_FOUND'
