"""Contact normalization used for signup-to-lead matching."""

import re
from typing import Optional
from urllib.parse import urlparse


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def phone_digits(phone: Optional[str]) -> Optional[str]:
    """
    Reduce a phone number to its last 10 digits for fuzzy matching.

    Accepts any formatting: "(555) 123-4567", "+1 555 123 4567", "5551234567".
    Returns None when fewer than 10 digits remain.
    """
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 10:
        return None
    return digits[-10:]


def hostname_from_url(url: Optional[str]) -> Optional[str]:
    """Extract the hostname from a URL, tolerating a missing scheme."""
    if not url:
        return None
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        host = urlparse(candidate).hostname
    except ValueError:
        return None
    return host or None
