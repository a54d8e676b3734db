"""Shared-secret header checks for webhooks and cron triggers"""

import hmac
from typing import Optional


def verify_shared_token(expected: Optional[str], received: Optional[str]) -> bool:
    """Constant-time token check; passes when no token is configured"""
    if not expected:
        return True
    if not received:
        return False
    return hmac.compare_digest(expected.encode(), received.encode())
