"""
Account resolution for contact mirroring.

Maps a host-level account identity onto the remote account whose contacts
are authoritative for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from contact_mirror.sync.contact import AccountIdentity

logger = logging.getLogger(__name__)


class AccountConfigError(ValueError):
    """Raised when configured accounts are malformed."""

    pass


@dataclass(frozen=True)
class RemoteAccount:
    """
    A remote account known to the host.

    Attributes:
        external_account_id: Id the remote source lists contacts for
        login_identity: Login (usually an email address) of the account
    """

    external_account_id: str
    login_identity: str

    def matches(self, identity: AccountIdentity) -> bool:
        """Check whether a host identity names this account (by login or id)."""
        return identity.name in (self.login_identity, self.external_account_id)


class AccountResolver(Protocol):
    def current_accounts(self) -> list[RemoteAccount]: ...


def resolve_account(
    resolver: AccountResolver, identity: AccountIdentity
) -> RemoteAccount | None:
    """
    Find the remote account for a host identity.

    Returns:
        The first matching RemoteAccount, or None if no account matches
    """
    for account in resolver.current_accounts():
        if account.matches(identity):
            return account
    return None


class ConfigAccountResolver:
    """
    Resolver backed by the ``accounts`` list of the configuration file.

    Usage:
        resolver = ConfigAccountResolver.from_config(config)
        account = resolve_account(resolver, AccountIdentity("me@x.com", "t"))
    """

    def __init__(self, accounts: list[RemoteAccount] | None = None):
        self._accounts = list(accounts or [])

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ConfigAccountResolver:
        """
        Build a resolver from a loaded configuration dictionary.

        Raises:
            AccountConfigError: If an account entry is missing a field
        """
        accounts = []
        for index, entry in enumerate(config.get("accounts") or []):
            if not isinstance(entry, dict):
                raise AccountConfigError(
                    f"accounts[{index}] must be a dictionary, "
                    f"got {type(entry).__name__}"
                )
            account_id = entry.get("external_account_id")
            login = entry.get("login_identity")
            if not account_id or not login:
                raise AccountConfigError(
                    f"accounts[{index}] requires external_account_id "
                    f"and login_identity"
                )
            accounts.append(RemoteAccount(str(account_id), str(login)))
        return cls(accounts)

    def current_accounts(self) -> list[RemoteAccount]:
        return list(self._accounts)
