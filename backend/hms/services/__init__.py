# Business Services
from hms.services.catalog import InventoryCatalog, ServiceCatalog
from hms.services.availability_service import AvailabilityService
from hms.services.reservation_service import ReservationService
from hms.services.payment_service import PaymentService
from hms.services.invoice_service import InvoiceService
from hms.services.booking_lifecycle import BookingLifecycleService
from hms.services.stay_service import StayService

__all__ = [
    'InventoryCatalog', 'ServiceCatalog', 'AvailabilityService',
    'ReservationService', 'PaymentService', 'InvoiceService',
    'BookingLifecycleService', 'StayService'
]
