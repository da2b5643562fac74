# auth.py
# Authentication collaborator.
#
# authenticate() returns an account id, or None for guest mode. A guest still
# trades normally; the session just never touches the document store.

import hashlib
import logging
import os
import uuid
from typing import Optional

log = logging.getLogger("exchange")


def account_id_for_token(token: str) -> str:
    """Stable account id for a sign-in token (the same token always maps to the same ledger)."""
    return "acct-" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


def authenticate(token: Optional[str] = None, enabled: Optional[bool] = None, prefix: str = "SIM_") -> Optional[str]:
    """
    Resolve the account for this session.

    Args:
        token: sign-in token; falls back to the {prefix}AUTH_TOKEN env var
        enabled: False forces guest mode; defaults to not {prefix}AUTH_DISABLED
    Returns:
        account id, a fresh anonymous id when no token is given, or None (guest)
    """
    if enabled is None:
        enabled = os.getenv(prefix + "AUTH_DISABLED", "").strip().lower() not in ("1", "true", "yes")
    if not enabled:
        log.warning("Authentication disabled. Running in guest mode; nothing will be persisted.")
        return None

    token = token or os.getenv(prefix + "AUTH_TOKEN")
    if token:
        account_id = account_id_for_token(token)
        log.info(f"Signed in with token as {account_id}")
        return account_id

    account_id = "anon-" + uuid.uuid4().hex[:16]
    log.info(f"Signed in anonymously as {account_id}")
    return account_id
