"""
Shared type definitions for redemption records and statistics.
"""

from typing import TypedDict


class RedemptionRecord(TypedDict, total=False):
    """
    One redeemed ticket code.

    Stored flat: core fields plus string-valued metadata copied from the
    submission (firstName, lastName, phone, street, ...).
    """

    code: str
    email: str
    timestamp: str
    campaign: str
    website: str
    firstName: str
    lastName: str
    phone: str


class StatsSummary(TypedDict):
    """Aggregate counts returned by get_statistics."""

    total_codes: int
    unique_emails: int
    by_campaign: dict[str, int]
    by_website: dict[str, int]
    degraded: bool
