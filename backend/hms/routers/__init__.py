# API Routers
from hms.routers import availability, bookings, stays, invoices, payments

__all__ = ['availability', 'bookings', 'stays', 'invoices', 'payments']
