"""
Helper functions for common infrastructure operations.

This module provides domain-agnostic utility functions for:
- Human-readable reference generation
- HTTP request helpers (client IP and user-agent extraction)

Usage:
    from core.helpers import generate_reference, get_client_ip

    suffix = generate_reference(6)  # e.g. "K7Q2ZD"
    ip = get_client_ip(request)
"""

from __future__ import annotations

import secrets
import string
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference(length: int = 6) -> str:
    """
    Generate a random uppercase alphanumeric reference.

    Uses the secrets module so references can't be predicted from
    earlier ones.

    Args:
        length: Number of characters

    Returns:
        String of ``length`` characters from A-Z and 0-9
    """
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def get_client_ip(request: HttpRequest | None) -> str | None:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains.

    Args:
        request: Django HTTP request (None for background tasks)

    Returns:
        Client IP address string, or None when there is no request
    """
    if request is None:
        return None
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # Take the first IP in the chain (original client)
        ip = x_forwarded_for.split(",")[0].strip()
    else:
        ip = request.META.get("REMOTE_ADDR", "")
    return ip or None


def get_user_agent(request: HttpRequest | None) -> str:
    """Return the request's User-Agent header truncated to 512 chars."""
    if request is None:
        return ""
    return request.META.get("HTTP_USER_AGENT", "")[:512]
