"""
Account configuration: which Instagram user id and access token to use
for each account key.
"""

import json
import logging
import os
import threading
from typing import Dict, List, Optional

from errors import AccountConfigError
from models import Account

logger = logging.getLogger(__name__)


def _account_from_entry(key: str, entry: Dict) -> Account:
    """
    Resolve one config entry. Ids and tokens may be given inline or through
    the names of environment variables that hold them.
    """
    ig_id = entry.get("ig_user_id") or entry.get("igId")
    token = entry.get("access_token") or entry.get("page_access_token") or entry.get("pageToken")

    usr_env = entry.get("ig_user_id_env")
    tok_env = entry.get("access_token_env")
    if not ig_id and usr_env:
        ig_id = os.getenv(usr_env)
    if not token and tok_env:
        token = os.getenv(tok_env)

    return Account(key=key, remote_user_id=ig_id or None, access_token=token or None)


def parse_account_map(raw: str) -> Dict[str, Account]:
    """Parse the IG_ACCOUNT_MAP_JSON format: {key: {ig_user_id, access_token}}."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("account map must be a JSON object")
    return {key: _account_from_entry(key, entry or {}) for key, entry in data.items()}


def load_accounts_file(path: str) -> Dict[str, Account]:
    """Parse an accounts.json list of {key|name, ig_user_id_env, access_token_env}."""
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [dict(v, key=k) for k, v in data.items()]
    accounts = {}
    for entry in data:
        key = entry.get("key") or entry.get("name")
        if not key:
            logger.warning("Skipping account entry without 'key' or 'name' in %s", path)
            continue
        accounts[key] = _account_from_entry(key, entry)
    return accounts


class AccountRegistry:
    """Read-only view of configured accounts, with an explicit reload."""

    def __init__(self, accounts: Optional[Dict[str, Account]] = None,
                 account_map_json: Optional[str] = None, accounts_file: Optional[str] = None):
        self._account_map_json = account_map_json
        self._accounts_file = accounts_file
        self._lock = threading.Lock()
        self._accounts: Dict[str, Account] = dict(accounts or {})
        if accounts is None:
            self.reload()

    @classmethod
    def from_settings(cls, settings) -> "AccountRegistry":
        return cls(account_map_json=settings.account_map_json, accounts_file=settings.accounts_file)

    def reload(self) -> int:
        """Re-read the configured source. Returns the number of accounts."""
        if self._account_map_json:
            try:
                accounts = parse_account_map(self._account_map_json)
            except ValueError as e:
                raise AccountConfigError("*", f"map is not valid JSON ({e})")
            source = "IG_ACCOUNT_MAP_JSON"
        elif self._accounts_file and os.path.exists(self._accounts_file):
            try:
                accounts = load_accounts_file(self._accounts_file)
            except ValueError as e:
                raise AccountConfigError("*", f"{self._accounts_file} is not valid JSON ({e})")
            source = self._accounts_file
        else:
            accounts = {}
            source = "nothing"

        with self._lock:
            self._accounts = accounts
        logger.info("Loaded %d account(s) from %s", len(accounts), source)
        return len(accounts)

    def get(self, key: str) -> Account:
        """Return a complete account or raise AccountConfigError."""
        with self._lock:
            account = self._accounts.get(key)
        if account is None:
            raise AccountConfigError(key, "not configured")
        if not account.remote_user_id:
            raise AccountConfigError(key, "is missing its Instagram user id")
        if not account.access_token:
            raise AccountConfigError(key, "is missing its access token")
        return account

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._accounts

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._accounts)

    def summary(self) -> List[Dict]:
        """Account keys and whether they are usable. Never includes tokens."""
        with self._lock:
            items = sorted(self._accounts.items())
        return [
            {
                "account": key,
                "ready": acct.is_complete,
                "has_user_id": bool(acct.remote_user_id),
                "has_token": bool(acct.access_token),
            }
            for key, acct in items
        ]
