"""
Delivery assignment: binding an order to a deliveryman and an outlet.

Preconditions are checked in a fixed order and the first failure wins.
The write itself is a compare-and-swap on orders.assignment_version, so of two
concurrent assignments for the same order exactly one succeeds.
"""

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from activity import log_activity
from errors import (
    AlreadyAssigned, ConcurrentModification, DeliverymanNotFound, InvalidDeliveryman, InvalidOutlet,
    OrderNotFound, OutletInactive, OutletMismatch, PermissionDenied, ValidationError,
)
from models import (
    db, Order, OrderAssignment, Outlet, User, utc_now,
    OUTLET_ACTIVE, ROLE_DELIVERYMAN, ROLE_OUTLET_STAFF,
)


class AssignmentResult:
    def __init__(self, assignment, previous=None, changed=True):
        self.assignment = assignment
        self.previous = previous
        self.changed = changed

    def to_dict(self):
        return {
            'assignment': self.assignment.to_dict(),
            'previous_assignment': self.previous,
            'changed': self.changed
        }


def _parse_deliveryman_id(value):
    # Usernames sent in place of numeric ids are rejected, not looked up
    if isinstance(value, bool):
        raise InvalidDeliveryman('ID kurir harus berupa angka', deliveryman_id=value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidDeliveryman('ID kurir harus berupa angka', deliveryman_id=value)


def _load_deliveryman(deliveryman_id):
    user_id = _parse_deliveryman_id(deliveryman_id)
    user = db.session.get(User, user_id)
    if user is None:
        raise DeliverymanNotFound(deliveryman_id=user_id)
    if user.role != ROLE_DELIVERYMAN:
        raise InvalidDeliveryman(f'User {user.username} bukan kurir', deliveryman_id=user_id, role=user.role)
    if not user.is_active:
        raise InvalidDeliveryman(f'Kurir {user.username} sedang nonaktif', deliveryman_id=user_id)
    return user


def _load_outlet(outlet_id):
    if outlet_id is not None and not isinstance(outlet_id, str):
        raise InvalidOutlet('ID outlet harus berupa teks', outlet_id=str(outlet_id))
    outlet = db.session.get(Outlet, outlet_id) if outlet_id else None
    if outlet is None:
        raise InvalidOutlet(outlet_id=outlet_id)
    if not outlet.is_active:
        raise OutletInactive(f'Outlet "{outlet.name}" sedang nonaktif', outlet_id=outlet.id)
    return outlet


def active_assignment(order_id):
    return OrderAssignment.query.filter_by(order_id=order_id, released_at=None).first()


def assign_order(order_id, deliveryman_id, outlet_id, force=False, expected_version=None, user=None):
    """Assign an order to a deliveryman at an outlet.

    Reassigning an order that already has an active assignment requires
    force=True; the previous assignment is released and both steps are audited.
    Assigning the same deliveryman and outlet again is a no-op.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)

    deliveryman = _load_deliveryman(deliveryman_id)
    outlet = _load_outlet(outlet_id)

    if deliveryman.outlet_id and deliveryman.outlet_id != outlet.id:
        raise OutletMismatch(
            f'Kurir {deliveryman.username} terdaftar di outlet {deliveryman.outlet_id}, bukan {outlet.id}',
            deliveryman_id=deliveryman.id, deliveryman_outlet_id=deliveryman.outlet_id, outlet_id=outlet.id
        )

    current_version = order.assignment_version or 0
    if expected_version is not None:
        try:
            expected_version = int(expected_version)
        except (TypeError, ValueError):
            raise ValidationError('expectedVersion harus berupa angka')
        if expected_version != current_version:
            raise ConcurrentModification(
                order_id=order_id, expected_version=expected_version, current_version=current_version
            )

    previous = active_assignment(order_id)
    if previous is not None and previous.deliveryman_id == deliveryman.id and previous.outlet_id == outlet.id:
        return AssignmentResult(previous, previous.to_dict(), changed=False)

    has_assignment = previous is not None or order.assigned_deliveryman_id is not None
    if has_assignment and not force:
        current = previous.to_dict() if previous else {
            'deliveryman_id': order.assigned_deliveryman_id,
            'outlet_id': order.assigned_outlet_id
        }
        raise AlreadyAssigned(order_id=order_id, current_assignment=current)

    legacy_previous = None
    if previous is None and order.assigned_deliveryman_id is not None:
        # assigned before assignment history existed
        legacy_previous = {
            'deliveryman_id': order.assigned_deliveryman_id,
            'outlet_id': order.assigned_outlet_id,
            'legacy': True
        }

    now = utc_now()
    stmt = (
        update(Order)
        .where(Order.id == order_id)
        .where(Order.assignment_version == current_version)
        .values(
            assigned_deliveryman_id=deliveryman.id,
            assigned_outlet_id=outlet.id,
            assignment_version=current_version + 1,
            updated_at=now
        )
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        db.session.rollback()
        current_app.logger.warning(f'Concurrent assignment detected for order {order_id}')
        raise ConcurrentModification(order_id=order_id)

    previous_snapshot = legacy_previous
    if previous is not None:
        previous.released_at = now
        previous.released_by = getattr(user, 'id', None)
        db.session.flush()
        previous_snapshot = previous.to_dict()

    assignment = OrderAssignment(
        order_id=order_id,
        deliveryman_id=deliveryman.id,
        outlet_id=outlet.id,
        assigned_by=getattr(user, 'id', None),
        assigned_at=now
    )
    db.session.add(assignment)

    if previous_snapshot:
        log_activity(
            'order_reassigned',
            f"Pesanan dialihkan dari kurir {previous_snapshot.get('deliveryman_id')}@{previous_snapshot.get('outlet_id')} "
            f"ke {deliveryman.username}@{outlet.id}",
            user=user, order_id=order_id
        )
    else:
        log_activity(
            'order_assigned',
            f'Pesanan ditugaskan ke {deliveryman.username}@{outlet.id}',
            user=user, order_id=order_id
        )

    try:
        db.session.commit()
    except IntegrityError:
        # another writer created the active assignment row first
        db.session.rollback()
        raise ConcurrentModification(order_id=order_id)

    db.session.refresh(order)
    current_app.logger.info(
        f'Order {order_id} assigned to deliveryman {deliveryman.id} at outlet {outlet.id} '
        f'(version {order.assignment_version})'
    )
    return AssignmentResult(assignment, previous_snapshot, changed=True)


def assignment_history(order_id):
    if db.session.get(Order, order_id) is None:
        raise OrderNotFound(order_id=order_id)
    return (OrderAssignment.query
            .filter_by(order_id=order_id)
            .order_by(OrderAssignment.id.desc())
            .all())


def orders_for_user(user):
    """Orders a deliveryman or outlet staff member works on.

    Deliverymen see the orders assigned to them; outlet staff see the orders
    assigned to their outlet. Admins see everything.
    """
    query = Order.query
    if user.has_role(ROLE_DELIVERYMAN):
        return query.filter(Order.assigned_deliveryman_id == user.id)
    if user.has_role(ROLE_OUTLET_STAFF):
        if not user.outlet_id:
            return query.filter(db.false())
        return query.filter(Order.assigned_outlet_id == user.outlet_id)
    return query


def get_order_for_user(order_id, user):
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)
    if user.has_role(ROLE_DELIVERYMAN) and order.assigned_deliveryman_id != user.id:
        raise PermissionDenied('Pesanan ini tidak ditugaskan kepada Anda', order_id=order_id)
    if user.has_role(ROLE_OUTLET_STAFF) and (not user.outlet_id or order.assigned_outlet_id != user.outlet_id):
        raise PermissionDenied('Pesanan ini bukan milik outlet Anda', order_id=order_id)
    return order


def list_assignment_options():
    """Active outlets plus active deliverymen with their outlet name (left join)."""
    outlets = (Outlet.query
               .filter(Outlet.status == OUTLET_ACTIVE)
               .order_by(Outlet.name.asc())
               .all())

    rows = (db.session.query(User.id, User.username, User.name, User.outlet_id,
                             Outlet.name.label('outlet_name'))
            .outerjoin(Outlet, User.outlet_id == Outlet.id)
            .filter(User.role == ROLE_DELIVERYMAN, User.is_active.is_(True))
            .order_by(User.username.asc())
            .all())

    return {
        'outlets': [
            {'id': o.id, 'name': o.name, 'location_alias': o.location_alias, 'address': o.address}
            for o in outlets
        ],
        'delivery_users': [
            {
                'id': row.id,
                'username': row.username,
                'name': row.name or row.username,
                'outlet_id': row.outlet_id,
                'outlet_name': row.outlet_name
            }
            for row in rows
        ]
    }


def diagnose_assignments(order_id=None):
    """Read-only consistency report over deliverymen and order assignments."""
    deliverymen = User.query.filter_by(role=ROLE_DELIVERYMAN).order_by(User.username).all()
    report = {
        'deliverymen_without_outlet': [u.username for u in deliverymen if not u.outlet_id],
        'invalid_deliveryman': [],
        'outlet_mismatch': [],
        'inactive_outlet': [],
    }

    query = Order.query.filter(Order.assigned_deliveryman_id.isnot(None))
    if order_id:
        query = query.filter(Order.id == order_id)

    for order in query.order_by(Order.created_at.desc()).all():
        deliveryman = order.deliveryman
        if deliveryman is None or deliveryman.role != ROLE_DELIVERYMAN:
            report['invalid_deliveryman'].append({
                'order_id': order.id,
                'assigned_deliveryman_id': order.assigned_deliveryman_id,
                'role': deliveryman.role if deliveryman else None
            })
            continue
        if deliveryman.outlet_id and order.assigned_outlet_id and deliveryman.outlet_id != order.assigned_outlet_id:
            report['outlet_mismatch'].append({
                'order_id': order.id,
                'deliveryman': deliveryman.username,
                'deliveryman_outlet_id': deliveryman.outlet_id,
                'assigned_outlet_id': order.assigned_outlet_id
            })
        if order.outlet is not None and not order.outlet.is_active:
            report['inactive_outlet'].append({'order_id': order.id, 'outlet_id': order.outlet.id})

    if order_id:
        order = db.session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id=order_id)
        report['order'] = order.to_dict(include_items=False)
        active = active_assignment(order_id)
        report['active_assignment'] = active.to_dict() if active else None

    report['issue_count'] = sum(
        len(report[key]) for key in ('deliverymen_without_outlet', 'invalid_deliveryman',
                                     'outlet_mismatch', 'inactive_outlet')
    )
    return report


def attach_deliverymen_to_outlet(outlet_id, user=None):
    """Give deliverymen that have no outlet the given outlet. Idempotent."""
    outlet = _load_outlet(outlet_id)
    orphans = User.query.filter(User.role == ROLE_DELIVERYMAN, User.outlet_id.is_(None)).all()
    for deliveryman in orphans:
        deliveryman.outlet_id = outlet.id
    usernames = [u.username for u in orphans]
    if usernames:
        log_activity(
            'deliverymen_attached',
            f"{len(usernames)} kurir dihubungkan ke outlet {outlet.id}: {', '.join(usernames)}",
            user=user
        )
    db.session.commit()
    return usernames
