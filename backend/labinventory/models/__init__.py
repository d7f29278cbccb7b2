from .users import User, Department
from .inventory import Category, Item, ItemDepartmentAccess, ItemSequence
from .borrowing import IssueRequest, IssueRecord
from .transfers import TransferRequest, TransferRecord
from .settings import Setting
from .audit import AuditLog
from .auth import SessionToken

__all__ = [
    'User', 'Department',
    'Category', 'Item', 'ItemDepartmentAccess', 'ItemSequence',
    'IssueRequest', 'IssueRecord',
    'TransferRequest', 'TransferRecord',
    'Setting',
    'AuditLog',
    'SessionToken',
]
