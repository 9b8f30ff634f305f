from .devices import Device
from .sessions import DeviceSession, SessionSegment
from .orders import Order, OrderItem
from .billing import Bill, BillPayment, PartialPayment, PartialPaymentItem, SessionPayment, BillEvent
from .documents import DocumentSequence

__all__ = [
    'Device',
    'DeviceSession', 'SessionSegment',
    'Order', 'OrderItem',
    'Bill', 'BillPayment', 'PartialPayment', 'PartialPaymentItem', 'SessionPayment', 'BillEvent',
    'DocumentSequence',
]
