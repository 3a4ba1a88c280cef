from .tenancy import Organization, User, Customer
from .inventory import Product, DocumentSequence
from .documents import Invoice, InvoiceItem, Quote, QuoteItem, Visit, VisitItem
from .notifications import Notification

__all__ = [
    'Organization', 'User', 'Customer',
    'Product', 'DocumentSequence',
    'Invoice', 'InvoiceItem', 'Quote', 'QuoteItem', 'Visit', 'VisitItem',
    'Notification',
]
