"""Base interface for tenant profile stores."""

from abc import ABC, abstractmethod
from typing import Any, Dict


class ProfileStore(ABC):
    """
    One keyed JSON document per tenant user.

    The document holds the per-instance token fields, portal identifiers and
    the mapping ``changes`` document. Stores only need read and partial update.
    """

    @abstractmethod
    def read_profile(self, user_id: str) -> Dict[str, Any]:
        """
        Read all fields of a user's profile.

        Returns:
            Field dictionary, empty when the user has no profile yet

        Raises:
            ProfileStoreError: When the backing store cannot be read
        """
        pass

    @abstractmethod
    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        """
        Merge ``fields`` into a user's profile, leaving other fields untouched.

        Raises:
            ProfileStoreError: When the backing store cannot be written
        """
        pass
