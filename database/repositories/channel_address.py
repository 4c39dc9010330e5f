from typing import List, Optional

from database.models import UserChannelAddress, BounceComplaint
from database.repositories.base import TenantScopedRepository


class ChannelAddressRepository(TenantScopedRepository):
    def get(self, user_id: str, channel: str) -> Optional[UserChannelAddress]:
        stmt = self._scoped(UserChannelAddress).where(
            UserChannelAddress.user_id == user_id,
            UserChannelAddress.channel == channel
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> List[UserChannelAddress]:
        stmt = self._scoped(UserChannelAddress).where(
            UserChannelAddress.user_id == user_id
        ).order_by(UserChannelAddress.channel)
        return list(self.db.execute(stmt).scalars().all())

    def find_by_address(self, channel: str, address: str) -> List[UserChannelAddress]:
        stmt = self._scoped(UserChannelAddress).where(
            UserChannelAddress.channel == channel,
            UserChannelAddress.address == address
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, address: UserChannelAddress) -> UserChannelAddress:
        return self._add(address)

    def find_event(self, provider: str, provider_event_id: str) -> Optional[BounceComplaint]:
        stmt = self._scoped(BounceComplaint).where(
            BounceComplaint.provider == provider,
            BounceComplaint.provider_event_id == provider_event_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_event(self, event: BounceComplaint) -> BounceComplaint:
        return self._add(event)
