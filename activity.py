from flask import has_request_context, request

from models import db, AdminActivityLog


def log_activity(activity_type, description, user=None, order_id=None, commit=False):
    """Record an admin activity entry.

    The entry joins the caller's transaction unless commit=True, so an audit
    row is only persisted together with the change it describes.
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
        user_agent = (request.headers.get('User-Agent') or '')[:255]

    entry = AdminActivityLog(
        user_id=getattr(user, 'id', None),
        username=getattr(user, 'username', None) or 'system',
        activity_type=activity_type,
        description=description,
        order_id=order_id,
        ip_address=ip_address,
        user_agent=user_agent
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    return entry


def recent_activity(limit=100, activity_type=None):
    query = AdminActivityLog.query
    if activity_type:
        query = query.filter_by(activity_type=activity_type)
    return query.order_by(AdminActivityLog.id.desc()).limit(limit).all()
