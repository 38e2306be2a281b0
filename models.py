from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash


def utc_now():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value):
    return as_utc(value).isoformat() if value else None


db = SQLAlchemy()

# Roles
ROLE_ADMIN = 'admin'
ROLE_DELIVERYMAN = 'deliveryman'
ROLE_OUTLET_STAFF = 'outlet_staff'
ROLES = (ROLE_ADMIN, ROLE_DELIVERYMAN, ROLE_OUTLET_STAFF)

# Local payment statuses
PAYMENT_PENDING = 'pending'
PAYMENT_PAID = 'paid'
PAYMENT_FAILED = 'failed'
PAYMENT_EXPIRED = 'expired'
PAYMENT_CANCELLED = 'cancelled'
PAYMENT_REFUNDED = 'refunded'
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED,
                    PAYMENT_EXPIRED, PAYMENT_CANCELLED, PAYMENT_REFUNDED)

OUTLET_ACTIVE = 'active'
OUTLET_INACTIVE = 'inactive'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(120))
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    role = db.Column(db.String(20), nullable=False, default=ROLE_OUTLET_STAFF)
    outlet_id = db.Column(db.String(50), db.ForeignKey('outlets_unified.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    force_password_change = db.Column(db.Boolean, default=False)  # Force password change on first login
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)
    last_login = db.Column(db.DateTime)

    outlet = db.relationship('Outlet', backref=db.backref('users', lazy='dynamic'))

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def has_role(self, role_name):
        return self.role == role_name

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name or self.username,
            'email': self.email,
            'phone': self.phone,
            'role': self.role,
            'outlet_id': self.outlet_id,
            'outlet_name': self.outlet.name if self.outlet else None,
            'is_active': self.is_active,
            'force_password_change': self.force_password_change,
            'last_login': _iso(self.last_login)
        }

    def __repr__(self):
        return f'<User {self.username}>'


class Outlet(db.Model):
    __tablename__ = 'outlets_unified'

    id = db.Column(db.String(50), primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    location_alias = db.Column(db.String(120), unique=True)  # Maps to locations.name
    address = db.Column(db.Text)
    city = db.Column(db.String(80), default='Yogyakarta')
    status = db.Column(db.String(20), nullable=False, default=OUTLET_ACTIVE)  # active, inactive
    phone = db.Column(db.String(20))
    operating_hours = db.Column(db.String(50), default='08:00-20:30')
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_active(self):
        return self.status == OUTLET_ACTIVE

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'location_alias': self.location_alias,
            'address': self.address,
            'city': self.city,
            'status': self.status,
            'phone': self.phone,
            'operating_hours': self.operating_hours
        }

    def __repr__(self):
        return f'<Outlet {self.id}>'


class Location(db.Model):
    __tablename__ = 'locations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def to_dict(self):
        return {'id': self.id, 'name': self.name}

    def __repr__(self):
        return f'<Location {self.name}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.String(50), primary_key=True)  # ORDER-<epoch ms>-<suffix>
    customer_name = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(30))
    customer_email = db.Column(db.String(120))
    delivery_location = db.Column(db.String(255))
    shipping_area = db.Column(db.String(50))  # dalam-kota, luar-kota
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    snap_token = db.Column(db.String(255))

    # Payment fields are only written through reconciliation
    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)
    transaction_status = db.Column(db.String(30))  # raw gateway status
    fraud_status = db.Column(db.String(20))
    payment_observed_at = db.Column(db.DateTime)

    # Current assignment; history lives in order_assignments
    assigned_deliveryman_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    assigned_outlet_id = db.Column(db.String(50), db.ForeignKey('outlets_unified.id'), nullable=True)
    assignment_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    items = db.relationship('OrderItem', backref='order', lazy='dynamic', cascade='all, delete-orphan')
    shipping_images = db.relationship('ShippingImage', backref='order', lazy='dynamic', cascade='all, delete-orphan')
    assignments = db.relationship('OrderAssignment', backref='order', lazy='dynamic', cascade='all, delete-orphan',
                                  order_by='OrderAssignment.id.desc()')
    deliveryman = db.relationship('User', foreign_keys=[assigned_deliveryman_id])
    outlet = db.relationship('Outlet', foreign_keys=[assigned_outlet_id])

    def calculate_total(self):
        self.total_amount = sum(item.subtotal for item in self.items)

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'customer_email': self.customer_email,
            'delivery_location': self.delivery_location,
            'shipping_area': self.shipping_area,
            'total_amount': self.total_amount,
            'payment_status': self.payment_status,
            'transaction_status': self.transaction_status,
            'payment_observed_at': _iso(self.payment_observed_at),
            'assigned_deliveryman_id': self.assigned_deliveryman_id,
            'assigned_outlet_id': self.assigned_outlet_id,
            'assignment_version': self.assignment_version,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
            data['shipping_images'] = [image.to_dict() for image in self.shipping_images]
        return data

    def __repr__(self):
        return f'<Order {self.id}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(50), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    product_name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, default=1)
    subtotal = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'product_name': self.product_name,
            'price': self.price,
            'quantity': self.quantity,
            'subtotal': self.subtotal
        }

    def __repr__(self):
        return f'<OrderItem {self.product_name} x{self.quantity}>'


class ShippingImage(db.Model):
    __tablename__ = 'shipping_images'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(50), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    image_type = db.Column(db.String(30), nullable=False)  # ready_for_pickup, picked_up, delivered
    image_url = db.Column(db.String(500), nullable=False)
    uploaded_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'image_type': self.image_type,
            'image_url': self.image_url,
            'uploaded_at': _iso(self.uploaded_at)
        }


class OrderAssignment(db.Model):
    """One row per assignment; the row with released_at NULL is the active one."""
    __tablename__ = 'order_assignments'
    __table_args__ = (
        db.Index('uq_order_assignments_active', 'order_id', unique=True,
                 sqlite_where=db.text('released_at IS NULL'),
                 postgresql_where=db.text('released_at IS NULL')),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(50), db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    deliveryman_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    outlet_id = db.Column(db.String(50), db.ForeignKey('outlets_unified.id'), nullable=False)
    assigned_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    assigned_at = db.Column(db.DateTime, default=utc_now)
    released_at = db.Column(db.DateTime, nullable=True)
    released_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    deliveryman = db.relationship('User', foreign_keys=[deliveryman_id])
    outlet = db.relationship('Outlet')

    @property
    def is_active(self):
        return self.released_at is None

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'deliveryman_id': self.deliveryman_id,
            'deliveryman_username': self.deliveryman.username if self.deliveryman else None,
            'outlet_id': self.outlet_id,
            'outlet_name': self.outlet.name if self.outlet else None,
            'assigned_by': self.assigned_by,
            'assigned_at': _iso(self.assigned_at),
            'released_at': _iso(self.released_at),
            'released_by': self.released_by,
            'is_active': self.is_active
        }

    def __repr__(self):
        return f'<OrderAssignment {self.order_id} -> {self.deliveryman_id}@{self.outlet_id}>'


class AdminActivityLog(db.Model):
    __tablename__ = 'admin_activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)  # null = system/CLI
    username = db.Column(db.String(80))
    activity_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text)
    order_id = db.Column(db.String(50), nullable=True)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'username': self.username,
            'activity_type': self.activity_type,
            'description': self.description,
            'order_id': self.order_id,
            'ip_address': self.ip_address,
            'created_at': _iso(self.created_at)
        }

    def __repr__(self):
        return f'<AdminActivityLog {self.id} - {self.activity_type}>'
