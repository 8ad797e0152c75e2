from .accounts import Account, DoctorProfile, SessionToken
from .inventory import InventoryItem, StockNotification
from .sales import Sale, SaleLine
from .appointments import Appointment, AppointmentPayment, Treatment, PaymentRecord

__all__ = [
    'Account', 'DoctorProfile', 'SessionToken',
    'InventoryItem', 'StockNotification',
    'Sale', 'SaleLine',
    'Appointment', 'AppointmentPayment', 'Treatment', 'PaymentRecord',
]
