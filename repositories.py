from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from models import Account, DisputeEntry


class AccountRepository(ABC):
    @abstractmethod
    def get(self, client_id: int) -> Optional[Account]:
        """Get account. Returns None if the client was never referenced."""
        pass

    @abstractmethod
    def save(self, account: Account) -> None:
        """Store account, replacing any previous version."""
        pass

    @abstractmethod
    def all(self) -> List[Account]:
        """Get every account ordered by client id."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of accounts."""
        pass

    def get_or_create(self, client_id: int) -> Account:
        account = self.get(client_id)
        if account is None:
            account = Account(client_id=client_id)
            self.save(account)
        return account


class DisputeIndex(ABC):
    @abstractmethod
    def get(self, tx_id: int) -> Optional[DisputeEntry]:
        """Get the disputable transaction registered under tx_id."""
        pass

    @abstractmethod
    def save(self, tx_id: int, entry: DisputeEntry) -> None:
        """Register or update a disputable transaction."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of registered transactions."""
        pass

    def __contains__(self, tx_id: int) -> bool:
        return self.get(tx_id) is not None


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get(self, client_id: int) -> Optional[Account]:
        return self.accounts.get(client_id)

    def save(self, account: Account) -> None:
        self.accounts[account.client_id] = account

    def all(self) -> List[Account]:
        return [self.accounts[client_id] for client_id in sorted(self.accounts)]

    def count(self) -> int:
        return len(self.accounts)


class InMemoryDisputeIndex(DisputeIndex):
    def __init__(self):
        self.entries: Dict[int, DisputeEntry] = {}

    def get(self, tx_id: int) -> Optional[DisputeEntry]:
        return self.entries.get(tx_id)

    def save(self, tx_id: int, entry: DisputeEntry) -> None:
        self.entries[tx_id] = entry

    def count(self) -> int:
        return len(self.entries)

    def __contains__(self, tx_id: int) -> bool:
        return tx_id in self.entries
