# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""State lock model."""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel


class Lock(BaseModel):
    """Mutual-exclusion lease over one state key.

    ``serial`` is the state serial this holder last observed; the store
    advances it on every successful commit made with this lock.
    """

    key: str
    lock_id: str
    holder: str
    acquired_at: datetime
    expires_at: datetime
    serial: int = 0
    released: bool = False

    @property
    def expired(self) -> bool:
        """True once the lease has run out."""
        return datetime.now(timezone.utc) >= self.expires_at


class LockInfo(BaseModel):
    """Lock metadata as stored, for inspection."""

    key: str
    lock_id: str
    holder: str
    acquired_at: datetime
    expires_at: datetime
    operation: Optional[str] = None
