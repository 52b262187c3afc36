"""
Sender address rules: a two-level decision table over domain and username.

The domain mode is evaluated first and decides which username list (if any)
is consulted:

  domains.mode   decision
  ------------   ---------------------------------------------------------
  none           defer to the username mode (table below)
  all            allow if domain whitelisted, else allow iff username not
                 blacklisted (username whitelist is NOT consulted)
  list           domain blacklisted: allow iff username whitelisted
                 otherwise:          allow iff username not blacklisted
  unspecified    allow

  usernames.mode decision (only under domains.mode == none)
  -------------- ---------------------------------------------------------
  none           allow
  all            deny
  list           allow iff username not blacklisted
  unspecified    allow
"""

import logging
import re
from typing import Tuple

from mailgate.models.filter_config import FilterConfig, RuleMode

logger = logging.getLogger(__name__)


def split_sender(from_address: str) -> Tuple[str, str]:
    """
    Lowercase a sender address and split it into (username, domain).

    A display-name form like ``"Alice <alice@example.com>"`` is reduced to the
    bracketed address first. A missing ``@`` yields an empty domain.
    """
    match = re.search(r"<([^>]+)>", from_address or "")
    addr = (match.group(1) if match else (from_address or "")).strip().lower()
    parts = addr.split("@")
    username = parts[0]
    domain = parts[1] if len(parts) > 1 else ""
    return username, domain


def username_decision(username: str, config: FilterConfig) -> bool:
    usernames = config.usernames
    if usernames.mode == RuleMode.NONE:
        return True
    if usernames.mode == RuleMode.ALL:
        return False
    if usernames.mode == RuleMode.LIST:
        return username not in usernames.blacklist
    return True


def is_sender_allowed(from_address: str, config: FilterConfig) -> bool:
    """Apply the domain/username decision table to a sender address."""
    username, domain = split_sender(from_address)
    domains = config.domains
    usernames = config.usernames

    logger.info(
        f"Sender rules: domains_mode={domains.mode.value}, "
        f"usernames_mode={usernames.mode.value}, username={username!r}, domain={domain!r}"
    )

    if domains.mode == RuleMode.NONE:
        return username_decision(username, config)

    if domains.mode == RuleMode.ALL:
        if domain in domains.whitelist:
            return True
        return username not in usernames.blacklist

    if domains.mode == RuleMode.LIST:
        if domain in domains.blacklist:
            return username in usernames.whitelist
        return username not in usernames.blacklist

    return True
