"""
Shipping proof photos for an order (ready for pickup, picked up, delivered).

Files are stored under UPLOAD_FOLDER/shipping and served from /uploads/.
Each order keeps at most one photo per image type; a new upload replaces the old one.
"""

import os
import time

from flask import current_app
from werkzeug.utils import secure_filename

from activity import log_activity
from errors import ShippingImageNotFound, ValidationError
from models import db, ShippingImage

IMAGE_TYPES = ('ready_for_pickup', 'picked_up', 'delivered')
IMAGE_MIMETYPES = ('image/jpeg', 'image/png', 'image/webp', 'image/gif')


def allowed_file(filename):
    return '.' in filename and \
           filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']


def shipping_folder():
    folder = os.path.join(current_app.config['UPLOAD_FOLDER'], 'shipping')
    os.makedirs(folder, exist_ok=True)
    return folder


def _remove_file(image_url):
    prefix = '/uploads/shipping/'
    if not image_url.startswith(prefix):
        return
    path = os.path.join(shipping_folder(), image_url[len(prefix):])
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def save_shipping_image(order, image_type, file, user=None):
    if image_type not in IMAGE_TYPES:
        raise ValidationError('Tipe foto tidak dikenal', image_type=image_type, valid_types=list(IMAGE_TYPES))
    if file is None or not file.filename:
        raise ValidationError('Foto wajib diunggah')
    if not allowed_file(file.filename) or file.mimetype not in IMAGE_MIMETYPES:
        raise ValidationError('Format foto harus JPG, PNG, WEBP atau GIF', filename=file.filename)

    extension = file.filename.rsplit('.', 1)[1].lower()
    filename = f"{secure_filename(order.id)}_{image_type}_{int(time.time() * 1000)}.{extension}"
    file.save(os.path.join(shipping_folder(), filename))

    replaced = ShippingImage.query.filter_by(order_id=order.id, image_type=image_type).all()
    for old in replaced:
        _remove_file(old.image_url)
        db.session.delete(old)

    image = ShippingImage(order_id=order.id, image_type=image_type, image_url=f'/uploads/shipping/{filename}')
    db.session.add(image)
    log_activity('shipping_image_uploaded', f'Foto {image_type} diunggah', user=user, order_id=order.id)
    db.session.commit()
    current_app.logger.info(f'Shipping image {image_type} saved for order {order.id}')
    return image


def list_shipping_images(order):
    return (ShippingImage.query
            .filter_by(order_id=order.id)
            .order_by(ShippingImage.uploaded_at.asc(), ShippingImage.id.asc())
            .all())


def delete_shipping_image(order, image_id, user=None):
    image = ShippingImage.query.filter_by(id=image_id, order_id=order.id).first()
    if image is None:
        raise ShippingImageNotFound(order_id=order.id, image_id=image_id)

    _remove_file(image.image_url)
    db.session.delete(image)
    log_activity('shipping_image_deleted', f'Foto {image.image_type} dihapus', user=user, order_id=order.id)
    db.session.commit()


def purge_shipping_images(order):
    """Delete every photo of an order; the caller commits."""
    for image in list_shipping_images(order):
        _remove_file(image.image_url)
    ShippingImage.query.filter_by(order_id=order.id).delete()
