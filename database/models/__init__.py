from .base import Base, JSONType, UTCDateTime, new_id, utcnow
from .tenant import Tenant
from .user import User, UserCustomerAssignment
from .notification_type import NotificationType
from .preference import UserNotificationPreference
from .notification import Notification, NotificationBatch
from .action import NotificationAction, NotificationBatchAction, UsedActionToken
from .channel_address import UserChannelAddress, BounceComplaint

__all__ = [
    'Base',
    'JSONType',
    'UTCDateTime',
    'new_id',
    'utcnow',
    'Tenant',
    'User',
    'UserCustomerAssignment',
    'NotificationType',
    'UserNotificationPreference',
    'Notification',
    'NotificationBatch',
    'NotificationAction',
    'NotificationBatchAction',
    'UsedActionToken',
    'UserChannelAddress',
    'BounceComplaint',
]
