from functools import wraps
import os
import re
import json
import time
import random
import string
import secrets

import click
from flask import Flask, jsonify, request, send_from_directory
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_wtf.csrf import CSRFProtect, CSRFError, generate_csrf
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from config import config
from models import (
    db, User, Outlet, Location, Order, OrderItem, OrderAssignment, utc_now,
    ROLES, ROLE_ADMIN, ROLE_DELIVERYMAN, ROLE_OUTLET_STAFF,
    PAYMENT_STATUSES, OUTLET_ACTIVE, OUTLET_INACTIVE,
)
from errors import (
    OrderServiceError, OrderNotFound, ValidationError, AuthenticationRequired,
    PermissionDenied, InvalidOutlet, DuplicateRecord, InvalidTransition,
)
from activity import log_activity, recent_activity
from midtrans_client import get_gateway, verify_signature
from reconciliation import reconcile_payment, apply_notification, sync_pending_payments
from assignment import (
    assign_order, assignment_history, active_assignment, list_assignment_options,
    diagnose_assignments, attach_deliverymen_to_outlet, orders_for_user, get_order_for_user,
)
from shipping import (
    save_shipping_image, list_shipping_images, delete_shipping_image, purge_shipping_images,
)

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(config[os.environ.get('FLASK_CONFIG', 'development')])

# Initialize CSRF Protection
csrf = CSRFProtect(app)

# Rate limiter for brute force protection; limits and storage come from RATELIMIT_* config
limiter = Limiter(app=app, key_func=get_remote_address)

# Initialize extensions
db.init_app(app)
login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(AuthenticationRequired().to_dict()), 401


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthenticationRequired()
            if not any(current_user.has_role(role) for role in roles):
                raise PermissionDenied()
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def get_json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Body permintaan harus berupa objek JSON')
    return data


def parse_int_arg(name, default, minimum=1, maximum=None):
    value = request.args.get(name)
    if value in (None, ''):
        return default
    try:
        value = int(value)
    except ValueError:
        raise ValidationError(f'Parameter {name} harus berupa angka')
    if value < minimum:
        raise ValidationError(f'Parameter {name} minimal {minimum}')
    if maximum is not None:
        value = min(value, maximum)
    return value


def validate_password(password):
    """Return an error message when the password is too weak, otherwise None"""
    if not password or len(password) < 8:
        return 'Password minimal 8 karakter!'
    # at least 1 uppercase, 1 lowercase, 1 number
    if not re.search(r'[A-Z]', password):
        return 'Password harus mengandung minimal 1 huruf besar!'
    if not re.search(r'[a-z]', password):
        return 'Password harus mengandung minimal 1 huruf kecil!'
    if not re.search(r'[0-9]', password):
        return 'Password harus mengandung minimal 1 angka!'
    return None


def generate_order_id():
    suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"ORDER-{int(time.time() * 1000)}-{suffix}"


# Security headers
@app.after_request
def add_header(response):
    """Add no-cache and security headers to every API response"""
    if response.mimetype == 'application/json':
        response.headers['Cache-Control'] = 'no-cache, no-store, must-revalidate, private'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'

    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['X-XSS-Protection'] = '1; mode=block'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    return response


# Error handlers
@app.errorhandler(OrderServiceError)
def handle_service_error(e):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(CSRFError)
def handle_csrf_error(e):
    return jsonify({'success': False, 'error': 'CSRF token missing or invalid', 'code': 'CSRF_ERROR'}), 400


@app.errorhandler(429)
def ratelimit_handler(e):
    """Custom handler for rate limit exceeded"""
    return jsonify({
        'success': False,
        'error': 'Terlalu banyak permintaan. Silakan tunggu sebentar.',
        'code': 'RATE_LIMITED'
    }), 429


HTTP_ERROR_MESSAGES = {
    404: 'Endpoint tidak ditemukan',
    405: 'Metode tidak diizinkan',
}


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({
        'success': False,
        'error': HTTP_ERROR_MESSAGES.get(e.code, e.name),
        'code': e.name.upper().replace(' ', '_')
    }), e.code


@app.errorhandler(Exception)
def internal_server_error(e):
    order_id = (request.view_args or {}).get('order_id')
    app.logger.exception(f'Unhandled error in {request.endpoint} (order {order_id})')
    db.session.rollback()
    return jsonify({'success': False, 'error': 'Terjadi kesalahan pada server', 'code': 'INTERNAL_ERROR'}), 500


# Initialize database and seed data
def init_db():
    """Create tables and the first admin account. Returns the generated password, if any."""
    with app.app_context():
        db.create_all()

        generated_password = None
        if not User.query.filter_by(role=ROLE_ADMIN).first():
            password = app.config.get('ADMIN_INITIAL_PASSWORD')
            if not password:
                password = generated_password = secrets.token_urlsafe(12)
            admin = User(username='admin', name='Administrator', role=ROLE_ADMIN, force_password_change=True)
            admin.set_password(password)
            db.session.add(admin)
            log_activity('maintenance', 'Database diinisialisasi, akun admin dibuat')
            db.session.commit()
            print("Created admin account 'admin' (password change required on first login)")
        return generated_password


# Auth API
@app.route('/api/auth/login', methods=['POST'])
@limiter.limit("10 per minute")
def api_login():
    data = get_json_body()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    user = User.query.filter_by(username=username).first() if username else None

    # Same answer for unknown user, wrong password and disabled account
    if not user or not user.check_password(password) or not user.is_active:
        app.logger.info(f'Failed login for {username!r} from {get_remote_address()}')
        return jsonify({'success': False, 'error': 'Username atau password salah!', 'code': 'INVALID_CREDENTIALS'}), 401

    if user.outlet and not user.outlet.is_active:
        return jsonify({
            'success': False,
            'error': f'Outlet "{user.outlet.name}" sedang nonaktif. Hubungi admin pusat.',
            'code': 'OUTLET_INACTIVE'
        }), 403

    login_user(user, remember=bool(data.get('remember', False)))
    user.last_login = utc_now()
    log_activity('login', f'{user.username} login', user=user)
    db.session.commit()

    return jsonify({
        'success': True,
        'user': user.to_dict(),
        'force_password_change': bool(user.force_password_change)
    })


@app.route('/api/auth/logout', methods=['POST'])
@login_required
def api_logout():
    log_activity('logout', f'{current_user.username} logout', user=current_user, commit=True)
    logout_user()
    return jsonify({'success': True})


@app.route('/api/auth/me')
@login_required
def api_me():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@app.route('/api/auth/csrf-token')
def api_csrf_token():
    return jsonify({'success': True, 'csrf_token': generate_csrf()})


@app.route('/api/auth/change-password', methods=['POST'])
@login_required
def api_change_password():
    data = get_json_body()
    current_password = data.get('current_password') or ''
    new_password = data.get('new_password') or ''
    confirm_password = data.get('confirm_password')

    if not current_user.check_password(current_password):
        raise ValidationError('Password saat ini salah!')

    error = validate_password(new_password)
    if error:
        raise ValidationError(error)

    if confirm_password is not None and new_password != confirm_password:
        raise ValidationError('Password baru tidak cocok!')

    current_user.set_password(new_password)
    current_user.force_password_change = False
    log_activity('password_changed', f'{current_user.username} mengganti password', user=current_user)
    db.session.commit()

    return jsonify({'success': True, 'message': 'Password berhasil diubah!'})


# Checkout API
@app.route('/api/orders', methods=['POST'])
@limiter.limit("30 per minute")
def api_create_order():
    data = get_json_body()
    customer_name = (data.get('customer_name') or '').strip()
    items = data.get('items')

    if not customer_name:
        raise ValidationError('Nama pelanggan wajib diisi')
    if not isinstance(items, list) or not items:
        raise ValidationError('Pesanan harus berisi minimal 1 item')

    order = Order(
        id=generate_order_id(),
        customer_name=customer_name,
        customer_phone=data.get('customer_phone'),
        customer_email=data.get('customer_email'),
        delivery_location=data.get('delivery_location'),
        shipping_area=data.get('shipping_area')
    )
    db.session.add(order)

    for index, item in enumerate(items):
        if not isinstance(item, dict) or not str(item.get('product_name') or '').strip():
            raise ValidationError(f'Item ke-{index + 1} tidak memiliki nama produk')
        try:
            price = int(item.get('price'))
            quantity = int(item.get('quantity', 1))
        except (TypeError, ValueError):
            raise ValidationError(f'Harga atau jumlah item ke-{index + 1} tidak valid')
        if price < 0 or quantity < 1:
            raise ValidationError(f'Harga atau jumlah item ke-{index + 1} tidak valid')

        db.session.add(OrderItem(
            order_id=order.id,
            product_name=str(item['product_name']).strip(),
            price=price,
            quantity=quantity,
            subtotal=price * quantity
        ))

    db.session.flush()
    order.calculate_total()

    # Checkout still succeeds without a Snap token; payment can be retried later
    order.snap_token = get_gateway().create_snap_token(order)
    db.session.commit()

    app.logger.info(f'Order {order.id} created, total {order.total_amount}')
    return jsonify({
        'success': True,
        'order': order.to_dict(),
        'snap_token': order.snap_token,
        'client_key': app.config.get('MIDTRANS_CLIENT_KEY')
    }), 201


@app.route('/api/orders/<order_id>')
def api_get_order(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)
    return jsonify({'success': True, 'order': order.to_dict()})


@csrf.exempt
@app.route('/api/payment/midtrans/callback', methods=['POST'])
@limiter.limit("30 per minute")  # Rate limit webhook calls
def api_midtrans_callback():
    """Handle Midtrans payment notification webhook - CSRF exempt for external service"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'success': False, 'error': 'Invalid JSON payload', 'code': 'VALIDATION_ERROR'}), 400

    if not verify_signature(data, app.config.get('MIDTRANS_SERVER_KEY', '')):
        app.logger.warning(f"Invalid Midtrans signature for order {data.get('order_id')}")
        return jsonify({'success': False, 'error': 'Invalid signature', 'code': 'INVALID_SIGNATURE'}), 401

    try:
        result = apply_notification(data)
    except InvalidTransition as e:
        # Acknowledge so Midtrans stops retrying; the rejection is already logged
        payload = e.to_dict()
        payload.update({'success': True, 'applied': False})
        return jsonify(payload), 200

    payload = result.to_dict()
    payload.update({'success': True, 'applied': result.written})
    return jsonify(payload)


# Admin order API
@app.route('/api/admin/orders')
@login_required
@role_required('admin')
def api_admin_orders():
    query = Order.query

    payment_status = request.args.get('payment_status')
    if payment_status:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f'payment_status tidak dikenal: {payment_status}')
        query = query.filter(Order.payment_status == payment_status)

    outlet_id = request.args.get('outlet_id')
    if outlet_id:
        query = query.filter(Order.assigned_outlet_id == outlet_id)

    page = parse_int_arg('page', 1)
    per_page = parse_int_arg('per_page', 20, maximum=100)
    pagination = query.order_by(Order.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'success': True,
        'orders': [order.to_dict(include_items=False) for order in pagination.items],
        'total': pagination.total,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page
    })


@app.route('/api/admin/orders/<order_id>')
@login_required
@role_required('admin')
def api_admin_order_detail(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)
    active = active_assignment(order_id)
    data = order.to_dict()
    data['active_assignment'] = active.to_dict() if active else None
    data['assignments'] = [a.to_dict() for a in assignment_history(order_id)]
    return jsonify({'success': True, 'order': data})


@app.route('/api/admin/orders/<order_id>', methods=['DELETE'])
@login_required
@role_required('admin')
def api_admin_delete_order(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)

    amount = f'{order.total_amount:,}'.replace(',', '.')
    log_activity(
        'order_deleted',
        f'Pesanan {order_id} ({order.customer_name}, Rp {amount}) dihapus',
        user=current_user, order_id=order_id
    )
    OrderItem.query.filter_by(order_id=order_id).delete()
    purge_shipping_images(order)
    OrderAssignment.query.filter_by(order_id=order_id).delete()
    db.session.delete(order)
    db.session.commit()
    app.logger.info(f'Order {order_id} deleted by {current_user.username}')
    return jsonify({'success': True, 'message': f'Pesanan {order_id} dihapus'})


@app.route('/api/admin/orders/<order_id>/sync-payment-status', methods=['POST'])
@login_required
@role_required('admin')
def api_sync_payment_status(order_id):
    result = reconcile_payment(order_id, user=current_user)
    return jsonify({
        'success': True,
        'payment_status': result.new_status,
        'transaction_status': result.transaction_status,
        'old': result.old_status,
        'new': result.new_status,
        'changed': result.changed,
        'stale': result.stale
    })


@app.route('/api/admin/orders/<order_id>/assign', methods=['POST'])
@login_required
@role_required('admin')
def api_assign_order(order_id):
    data = get_json_body()
    force = str(data.get('force', '')).lower() in ('1', 'true', 'yes')
    result = assign_order(
        order_id,
        data.get('deliverymanId'),
        data.get('outletId'),
        force=force,
        expected_version=data.get('expectedVersion'),
        user=current_user
    )
    order = db.session.get(Order, order_id)
    payload = result.to_dict()
    payload.update({'success': True, 'assignment_version': order.assignment_version})
    return jsonify(payload)


@app.route('/api/admin/orders/<order_id>/assignments')
@login_required
@role_required('admin')
def api_order_assignments(order_id):
    history = assignment_history(order_id)
    return jsonify({'success': True, 'assignments': [a.to_dict() for a in history]})


@app.route('/api/assignment-options')
@login_required
@role_required('admin')
def api_assignment_options():
    options = list_assignment_options()
    return jsonify({'success': True, **options})


@app.route('/api/admin/activity')
@login_required
@role_required('admin')
def api_admin_activity():
    limit = parse_int_arg('limit', 100, maximum=500)
    entries = recent_activity(limit=limit, activity_type=request.args.get('type'))
    return jsonify({'success': True, 'activities': [entry.to_dict() for entry in entries]})


@app.route('/api/admin/diagnostics/assignments')
@login_required
@role_required('admin')
def api_diagnose_assignments():
    report = diagnose_assignments(order_id=request.args.get('order_id') or None)
    return jsonify({'success': True, 'report': report})


# User & outlet management
@app.route('/api/admin/users')
@login_required
@role_required('admin')
def api_admin_users():
    query = User.query
    role = request.args.get('role')
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.username).all()
    return jsonify({'success': True, 'users': [u.to_dict() for u in users]})


@app.route('/api/admin/users', methods=['POST'])
@login_required
@role_required('admin')
def api_admin_create_user():
    data = get_json_body()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    role = data.get('role')
    outlet_id = data.get('outlet_id') or None

    if not username:
        raise ValidationError('Username wajib diisi')
    if role not in ROLES:
        raise ValidationError(f"Role harus salah satu dari: {', '.join(ROLES)}")
    error = validate_password(password)
    if error:
        raise ValidationError(error)
    if role == ROLE_OUTLET_STAFF and not outlet_id:
        raise ValidationError('Staf outlet wajib memiliki outlet')
    if outlet_id and db.session.get(Outlet, outlet_id) is None:
        raise InvalidOutlet(outlet_id=outlet_id)
    if User.query.filter_by(username=username).first():
        raise DuplicateRecord('Username sudah digunakan!', username=username)

    user = User(
        username=username,
        name=data.get('name') or username,
        email=data.get('email'),
        phone=data.get('phone'),
        role=role,
        outlet_id=outlet_id if role in (ROLE_DELIVERYMAN, ROLE_OUTLET_STAFF) else None,
        force_password_change=bool(data.get('force_password_change', True))
    )
    user.set_password(password)
    db.session.add(user)
    log_activity('user_created', f'User {username} ({role}) dibuat', user=current_user)
    db.session.commit()

    return jsonify({'success': True, 'user': user.to_dict()}), 201


@app.route('/api/outlets')
def api_outlets():
    outlets = Outlet.query.order_by(Outlet.name).all()
    return jsonify({'success': True, 'outlets': [o.to_dict() for o in outlets]})


@app.route('/api/admin/outlets', methods=['POST'])
@login_required
@role_required('admin')
def api_admin_create_outlet():
    data = get_json_body()
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Nama outlet wajib diisi')

    outlet_id = (data.get('id') or '').strip() or 'outlet_' + re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_')
    status = data.get('status', OUTLET_ACTIVE)
    if status not in (OUTLET_ACTIVE, OUTLET_INACTIVE):
        raise ValidationError('Status outlet harus active atau inactive')
    if db.session.get(Outlet, outlet_id) or Outlet.query.filter_by(name=name).first():
        raise DuplicateRecord('Outlet sudah ada', outlet_id=outlet_id)

    outlet = Outlet(
        id=outlet_id,
        name=name,
        location_alias=data.get('location_alias'),
        address=data.get('address'),
        city=data.get('city') or 'Yogyakarta',
        phone=data.get('phone'),
        status=status
    )
    db.session.add(outlet)
    log_activity('outlet_created', f'Outlet {outlet_id} ({name}) dibuat', user=current_user)
    db.session.commit()
    return jsonify({'success': True, 'outlet': outlet.to_dict()}), 201


@app.route('/api/admin/outlets/<outlet_id>/status', methods=['POST'])
@login_required
@role_required('admin')
def api_admin_outlet_status(outlet_id):
    data = get_json_body()
    status = data.get('status')
    if status not in (OUTLET_ACTIVE, OUTLET_INACTIVE):
        raise ValidationError('Status outlet harus active atau inactive')

    outlet = db.session.get(Outlet, outlet_id)
    if outlet is None:
        raise InvalidOutlet(outlet_id=outlet_id)

    if outlet.status != status:
        log_activity('outlet_status_changed', f'Outlet {outlet_id}: {outlet.status} -> {status}', user=current_user)
        outlet.status = status
        db.session.commit()
    return jsonify({'success': True, 'outlet': outlet.to_dict()})


@app.route('/api/locations')
def api_locations():
    locations = Location.query.order_by(Location.name).all()
    return jsonify({'success': True, 'locations': [loc.to_dict() for loc in locations]})


# Deliveryman & outlet staff API
@app.route('/api/my/orders')
@login_required
@role_required('deliveryman', 'outlet_staff')
def api_my_orders():
    query = orders_for_user(current_user)

    payment_status = request.args.get('payment_status')
    if payment_status:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f'payment_status tidak dikenal: {payment_status}')
        query = query.filter(Order.payment_status == payment_status)

    page = parse_int_arg('page', 1)
    per_page = parse_int_arg('per_page', 20, maximum=100)
    pagination = query.order_by(Order.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'success': True,
        'orders': [order.to_dict(include_items=False) for order in pagination.items],
        'total': pagination.total,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page
    })


@app.route('/api/my/orders/<order_id>')
@login_required
@role_required('deliveryman', 'outlet_staff')
def api_my_order_detail(order_id):
    order = get_order_for_user(order_id, current_user)
    return jsonify({'success': True, 'order': order.to_dict()})


@app.route('/api/orders/<order_id>/shipping-images')
@login_required
@role_required('admin', 'deliveryman', 'outlet_staff')
def api_shipping_images(order_id):
    order = get_order_for_user(order_id, current_user)
    images = list_shipping_images(order)
    return jsonify({'success': True, 'images': [image.to_dict() for image in images]})


@app.route('/api/orders/<order_id>/shipping-images/<image_type>', methods=['POST'])
@login_required
@role_required('admin', 'deliveryman', 'outlet_staff')
def api_upload_shipping_image(order_id, image_type):
    order = get_order_for_user(order_id, current_user)
    image = save_shipping_image(order, image_type, request.files.get('image'), user=current_user)
    return jsonify({'success': True, 'image': image.to_dict()}), 201


@app.route('/api/orders/<order_id>/shipping-images/<int:image_id>', methods=['DELETE'])
@login_required
@role_required('admin', 'outlet_staff')
def api_delete_shipping_image(order_id, image_id):
    order = get_order_for_user(order_id, current_user)
    delete_shipping_image(order, image_id, user=current_user)
    return jsonify({'success': True, 'message': 'Foto pengiriman dihapus'})


@app.route('/uploads/<path:filename>')
def uploaded_file(filename):
    """Serve uploaded shipping photos"""
    return send_from_directory(app.config['UPLOAD_FOLDER'], filename)


# Maintenance commands
@app.cli.command('init-db')
def init_db_command():
    """Create tables and seed the admin account."""
    generated_password = init_db()
    if generated_password:
        click.echo(f'Generated admin password (shown once): {generated_password}')
    click.echo('Database ready.')


@app.cli.command('reset-password')
@click.argument('username')
@click.password_option()
def reset_password_command(username, password):
    """Set a new password for USERNAME and require a change on next login."""
    user = User.query.filter_by(username=username).first()
    if user is None:
        raise click.ClickException(f'User {username} tidak ditemukan')
    error = validate_password(password)
    if error:
        raise click.ClickException(error)
    user.set_password(password)
    user.force_password_change = True
    log_activity('password_reset', f'Password {username} direset lewat CLI')
    db.session.commit()
    click.echo(f'Password for {username} updated.')


@app.cli.command('diagnose-assignments')
@click.option('--order-id', default=None, help='Only inspect this order.')
def diagnose_assignments_command(order_id):
    """Report deliverymen and assignments that break outlet rules."""
    try:
        report = diagnose_assignments(order_id=order_id)
    except OrderNotFound:
        raise click.ClickException(f'Pesanan {order_id} tidak ditemukan')
    log_activity('maintenance', f"diagnose-assignments: {report['issue_count']} masalah", order_id=order_id,
                 commit=True)
    click.echo(json.dumps(report, indent=2))


@app.cli.command('sync-payments')
@click.option('--limit', default=50, show_default=True, help='Maximum pending orders to reconcile.')
def sync_payments_command(limit):
    """Reconcile pending orders against Midtrans."""
    summary = sync_pending_payments(limit=limit)
    log_activity(
        'maintenance',
        f"sync-payments: {len(summary['synced'])} diperbarui, {len(summary['deferred'])} ditunda",
        commit=True
    )
    click.echo(json.dumps(summary, indent=2))


@app.cli.command('attach-deliverymen')
@click.option('--outlet-id', required=True, help='Outlet given to deliverymen without one.')
def attach_deliverymen_command(outlet_id):
    """Attach deliverymen that have no outlet to OUTLET_ID."""
    try:
        usernames = attach_deliverymen_to_outlet(outlet_id)
    except OrderServiceError as e:
        raise click.ClickException(e.message)
    if usernames:
        click.echo(f"Attached to {outlet_id}: {', '.join(usernames)}")
    else:
        click.echo('No deliverymen without an outlet.')


if __name__ == '__main__':
    # Initialize database
    generated = init_db()
    if generated:
        print(f"Generated admin password (shown once): {generated}")

    # Use debug mode only in development (controlled by environment variable)
    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    app.run(debug=debug_mode, host='0.0.0.0', port=8000, use_reloader=debug_mode)
