from .tenancy import Tenant, Site, Weighbridge
from .fleet import Vehicle, VehicleAxleConfig, Driver
from .jobs import Customer, Product, Job, JOB_STATUSES, ACTIVE_JOB_STATUSES
from .weighing import WeighingSession, DeckWeight, OverloadRecord, DocketSequence
from .sync import SyncBatch, SyncBatchItem
from .audit import AuditEvent
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken, SecurityEvent

__all__ = [
    'Tenant', 'Site', 'Weighbridge',
    'Vehicle', 'VehicleAxleConfig', 'Driver',
    'Customer', 'Product', 'Job', 'JOB_STATUSES', 'ACTIVE_JOB_STATUSES',
    'WeighingSession', 'DeckWeight', 'OverloadRecord', 'DocketSequence',
    'SyncBatch', 'SyncBatchItem',
    'AuditEvent',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken', 'SecurityEvent',
]
