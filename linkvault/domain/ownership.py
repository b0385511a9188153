from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from linkvault.core.config import STARTER_OWNER_ID


@dataclass(frozen=True)
class PartnerOwned:
    # Links issued to a partner tenant; expiry is enforced.
    owner_id: str

    @property
    def storage_id(self) -> str:
        return self.owner_id

    @property
    def enforces_expiry(self) -> bool:
        return True


@dataclass(frozen=True)
class StarterFlow:
    # Links sold directly on the platform site; expiry is not enforced on redemption.
    @property
    def owner_id(self) -> str:
        return STARTER_OWNER_ID

    @property
    def storage_id(self) -> str:
        return STARTER_OWNER_ID

    @property
    def enforces_expiry(self) -> bool:
        return False


LinkOwner = Union[PartnerOwned, StarterFlow]


def owner_from_storage(owner_id: str) -> LinkOwner:
    """Map a persisted owner id back onto the tagged owner variant."""
    if owner_id == STARTER_OWNER_ID:
        return StarterFlow()
    return PartnerOwned(owner_id=owner_id)
