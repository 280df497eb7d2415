# Ontology Models
from hms.models.ontology import (
    RoomType, Room, Guest, Service, Booking, BookingExtra,
    Stay, StayCharge, Invoice, InvoiceLine, PaymentTransaction
)

__all__ = [
    'RoomType', 'Room', 'Guest', 'Service', 'Booking', 'BookingExtra',
    'Stay', 'StayCharge', 'Invoice', 'InvoiceLine', 'PaymentTransaction'
]
