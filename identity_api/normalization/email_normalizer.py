"""Email normalizer.

Lowercases and strips an address.  Gmail dot-normalization is applied:
dots in the local part of ``@gmail.com`` and ``@googlemail.com`` addresses
are removed because Gmail delivers ``j.o.h.n@gmail.com`` and
``john@gmail.com`` to the same mailbox, so both belong to one identity.

Sub-address tags (``user+tag@domain``) are kept; customers use them to
tell merchants apart and collapsing them would merge distinct contacts.

Raw values are never logged.
"""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

_GMAIL_DOMAINS = frozenset({"gmail.com", "googlemail.com"})


def normalize_email(raw: str) -> str:
    """Return *raw* in canonical lowercase form, or ``""`` when blank."""
    stripped = raw.strip().lower()
    if not stripped:
        return ""

    local, sep, domain = stripped.rpartition("@")
    if not sep or not local:
        logger.debug("normalize_email: no usable '@' found (length=%d)", len(stripped))
        return stripped

    if domain == "googlemail.com":
        domain = "gmail.com"
    if domain in _GMAIL_DOMAINS:
        local = local.replace(".", "")

    return f"{local}@{domain}"
