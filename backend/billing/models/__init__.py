
from .tenancy import Vendor, Customer, GstSlab
from .billing import InvoiceSettings, Challan, ChallanItem, Bill, BillItem
from .payments import Payment, Transaction
from .auth import SessionToken
from .imports import ImportJob

__all__ = [
    'Vendor', 'Customer', 'GstSlab',
    'InvoiceSettings', 'Challan', 'ChallanItem', 'Bill', 'BillItem',
    'Payment', 'Transaction',
    'SessionToken',
    'ImportJob',
]
