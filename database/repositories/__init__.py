from database.repositories.base import BaseRepository, TenantScopedRepository
from database.repositories.notification_type import NotificationTypeRepository
from database.repositories.preference import PreferenceRepository
from database.repositories.notification import NotificationRepository, BatchRepository
from database.repositories.action import ActionRepository
from database.repositories.channel_address import ChannelAddressRepository
from database.repositories.sweep import DueWorkRepository

__all__ = [
    'BaseRepository',
    'TenantScopedRepository',
    'NotificationTypeRepository',
    'PreferenceRepository',
    'NotificationRepository',
    'BatchRepository',
    'ActionRepository',
    'ChannelAddressRepository',
    'DueWorkRepository',
]
