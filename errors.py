"""
Error taxonomy for order payment sync and delivery assignment.

Every error carries the HTTP status and a stable code so the API layer can
turn it into a {'success': False, 'error': ..., 'code': ...} payload.
"""


class OrderServiceError(Exception):
    status_code = 500
    code = 'INTERNAL_ERROR'
    message = 'Terjadi kesalahan pada server'

    def __init__(self, message=None, **details):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        payload = {'success': False, 'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(OrderServiceError):
    status_code = 400
    code = 'VALIDATION_ERROR'
    message = 'Data permintaan tidak valid'


class AuthenticationRequired(OrderServiceError):
    status_code = 401
    code = 'AUTHENTICATION_REQUIRED'
    message = 'Silakan login terlebih dahulu'


class PermissionDenied(OrderServiceError):
    status_code = 403
    code = 'PERMISSION_DENIED'
    message = 'Anda tidak memiliki akses ke fitur ini'


class OrderNotFound(OrderServiceError):
    status_code = 404
    code = 'ORDER_NOT_FOUND'
    message = 'Pesanan tidak ditemukan'


class ShippingImageNotFound(OrderServiceError):
    status_code = 404
    code = 'SHIPPING_IMAGE_NOT_FOUND'
    message = 'Foto pengiriman tidak ditemukan'


class DuplicateRecord(OrderServiceError):
    status_code = 409
    code = 'DUPLICATE_RECORD'
    message = 'Data sudah ada'


# Assignment

class InvalidDeliveryman(OrderServiceError):
    status_code = 422
    code = 'INVALID_DELIVERYMAN'
    message = 'Kurir tidak valid'


class DeliverymanNotFound(InvalidDeliveryman):
    status_code = 404
    code = 'DELIVERYMAN_NOT_FOUND'
    message = 'Kurir tidak ditemukan'


class InvalidOutlet(OrderServiceError):
    status_code = 404
    code = 'INVALID_OUTLET'
    message = 'Outlet tidak ditemukan'


class OutletInactive(OrderServiceError):
    status_code = 409
    code = 'OUTLET_INACTIVE'
    message = 'Outlet sedang nonaktif'


class OutletMismatch(OrderServiceError):
    status_code = 409
    code = 'OUTLET_MISMATCH'
    message = 'Kurir terdaftar di outlet lain'


class AlreadyAssigned(OrderServiceError):
    status_code = 409
    code = 'ALREADY_ASSIGNED'
    message = 'Pesanan sudah ditugaskan; gunakan force untuk menugaskan ulang'


class ConcurrentModification(OrderServiceError):
    status_code = 409
    code = 'CONCURRENT_MODIFICATION'
    message = 'Pesanan baru saja diubah oleh permintaan lain, muat ulang dan coba lagi'


# Payment gateway and reconciliation

class GatewayError(OrderServiceError):
    status_code = 502
    code = 'GATEWAY_ERROR'
    message = 'Gagal menghubungi payment gateway'


class GatewayUnavailable(GatewayError):
    """Network failure, timeout or 5xx from the gateway."""
    status_code = 503
    code = 'GATEWAY_UNAVAILABLE'


class GatewayRejected(GatewayError):
    """4xx from the gateway, e.g. the order id is unknown to it."""
    status_code = 502
    code = 'GATEWAY_REJECTED'
    message = 'Payment gateway menolak permintaan'


class ReconciliationDeferred(OrderServiceError):
    status_code = 503
    code = 'RECONCILIATION_DEFERRED'
    message = 'Payment gateway tidak tersedia, coba lagi nanti'


class ReconciliationInvalid(OrderServiceError):
    status_code = 502
    code = 'RECONCILIATION_INVALID'
    message = 'Transaksi tidak dikenali payment gateway, perlu pengecekan manual'


class InvalidTransition(OrderServiceError):
    status_code = 422
    code = 'INVALID_TRANSITION'
    message = 'Perubahan status pembayaran ditolak'
