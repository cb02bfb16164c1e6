"""Identity roster mapping Discord accounts to tracked people."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .models import ConfigurationError, Person

logger = logging.getLogger(__name__)


class Roster:
    """Read-only set of people, indexed by every account id they own."""

    def __init__(self, persons: Iterable[Person]) -> None:
        self._persons: List[Person] = list(persons)
        self._by_account: Dict[int, Person] = {}
        for person in self._persons:
            for account_id in person.account_ids:
                owner = self._by_account.get(account_id)
                if owner is None:
                    self._by_account[account_id] = person
                elif owner is not person:
                    raise ConfigurationError(
                        f"Discord account {account_id} is listed for both "
                        f"'{owner.name}' and '{person.name}'; each account may "
                        "belong to one user only"
                    )
        logger.debug(
            "Roster built with %d users and %d accounts",
            len(self._persons),
            len(self._by_account),
        )

    def __iter__(self) -> Iterator[Person]:
        return iter(self._persons)

    def __len__(self) -> int:
        return len(self._persons)

    def resolve(self, account_id: int) -> Optional[Person]:
        return self._by_account.get(account_id)

    def is_same_person(self, account_id: int, candidate_id: int) -> bool:
        """Whether both accounts belong to the same tracked person."""

        person = self.resolve(account_id)
        if person is None:
            return False
        return person.has_account(candidate_id)

    def others(self, person: Person) -> List[Person]:
        return [
            other
            for other in self._persons
            if other.primary_account_id != person.primary_account_id
        ]


__all__ = ["Roster"]
