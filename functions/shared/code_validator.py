"""
Ticket code redemption validator.

Enforces the sweepstakes rules against the redemption store:

- a ticket code is 8 characters of A-Z/0-9 and can be redeemed once
- an email address may take part once per campaign

Validation failures are ordinary return values (ValidationResult), not
exceptions. Only a failed write is treated as fatal for a redemption: the
result reports persistence_error and the caller must not confirm it.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from shared.constants import (
    CODE_PATTERN,
    DEFAULT_CAMPAIGN,
    DEFAULT_WEBSITE,
    EMAIL_PATTERN,
    RESERVED_RECORD_FIELDS,
    UNKNOWN,
)
from shared.logging_utils import mask_email
from shared.redemption_store import PersistenceError, RedemptionStore, get_redemption_store
from shared.types import RedemptionRecord, StatsSummary

logger = logging.getLogger(__name__)

# Validation error codes
INVALID_FORMAT = "invalid_format"
INVALID_EMAIL_FORMAT = "invalid_email_format"
ALREADY_REDEEMED = "already_redeemed"
DUPLICATE_PARTICIPATION = "duplicate_participation"
PERSISTENCE_ERROR = "persistence_error"

MESSAGES = {
    INVALID_FORMAT: "Code must be exactly 8 characters (A-Z, 0-9)",
    INVALID_EMAIL_FORMAT: "Invalid email address",
    ALREADY_REDEEMED: "This code has already been redeemed",
    DUPLICATE_PARTICIPATION: "This email address has already taken part in this sweepstakes",
    PERSISTENCE_ERROR: "The redemption could not be recorded",
}


@dataclass
class ValidationResult:
    """Outcome of a validation or redemption."""

    valid: bool
    error: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **details) -> "ValidationResult":
        return cls(valid=True, details=details)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None, **details) -> "ValidationResult":
        return cls(valid=False, error=error, message=message or MESSAGES[error], details=details)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MutationResult:
    """Outcome of mark_code_as_used."""

    success: bool
    error: Optional[str] = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_code_format(code: Any) -> bool:
    """True if `code` normalizes to exactly 8 characters of A-Z/0-9."""
    return isinstance(code, str) and bool(CODE_PATTERN.match(normalize_code(code)))


def is_valid_email_format(email: Any) -> bool:
    return isinstance(email, str) and bool(EMAIL_PATTERN.match(normalize_email(email)))


def stringify_value(value: Any) -> str:
    """Render a metadata value the way it is stored: booleans lower-case, containers as JSON."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def build_record(
    code: str,
    email: str,
    extra: Optional[Mapping[str, Any]] = None,
    campaign: Optional[str] = None,
) -> RedemptionRecord:
    """
    Build the stored record for a redemption.

    Core fields come from the arguments. Metadata from `extra` is copied as
    strings; None values are dropped and reserved fields are ignored.
    """
    metadata: Dict[str, str] = {}
    for key, value in (extra or {}).items():
        if value is None:
            continue
        if key in RESERVED_RECORD_FIELDS:
            logger.warning(f"Ignoring reserved field {key!r} in redemption metadata")
            continue
        metadata[str(key)] = stringify_value(value)

    record: RedemptionRecord = {
        "code": normalize_code(code),
        "email": normalize_email(email),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "campaign": campaign or metadata.pop("campaign", None) or DEFAULT_CAMPAIGN,
        "website": metadata.pop("website", None) or DEFAULT_WEBSITE,
        "firstName": "",
        "lastName": "",
        "phone": "",
    }
    metadata.pop("campaign", None)
    record.update(metadata)
    return record


def _already_redeemed(entry: Any) -> ValidationResult:
    entry = entry if isinstance(entry, dict) else {}
    return ValidationResult.fail(
        ALREADY_REDEEMED,
        used_by=entry.get("email") or UNKNOWN,
        used_at=entry.get("timestamp") or UNKNOWN,
    )


def validate_code(
    code: Any,
    campaign: str = DEFAULT_CAMPAIGN,
    store: Optional[RedemptionStore] = None,
) -> ValidationResult:
    """
    Check that a ticket code is well-formed and not yet redeemed.

    Codes are unique per store, so `campaign` does not affect the lookup.
    """
    if not code or not isinstance(code, str):
        return ValidationResult.fail(INVALID_FORMAT)

    normalized = normalize_code(code)
    if not CODE_PATTERN.match(normalized):
        return ValidationResult.fail(INVALID_FORMAT)

    store = store or get_redemption_store()
    records = store.load()

    if normalized in records:
        return _already_redeemed(records[normalized])

    return ValidationResult.ok()


def validate_email(
    email: Any,
    campaign: str = DEFAULT_CAMPAIGN,
    store: Optional[RedemptionStore] = None,
) -> ValidationResult:
    """Check that an email is well-formed and has not yet taken part in `campaign`."""
    if not email or not isinstance(email, str):
        return ValidationResult.fail(INVALID_EMAIL_FORMAT)

    normalized = normalize_email(email)
    if not EMAIL_PATTERN.match(normalized):
        return ValidationResult.fail(INVALID_EMAIL_FORMAT)

    store = store or get_redemption_store()
    records = store.load()

    existing_codes = []
    for key, entry in records.items():
        if not isinstance(entry, dict) or not entry.get("email"):
            logger.warning(f"Skipping redemption record without email: {key}")
            continue
        if str(entry["email"]).lower() == normalized and entry.get("campaign") == campaign:
            existing_codes.append(entry.get("code") or UNKNOWN)

    if existing_codes:
        return ValidationResult.fail(DUPLICATE_PARTICIPATION, existing_codes=existing_codes)

    return ValidationResult.ok()


def validate_submission(
    code: Any,
    email: Any,
    campaign: str = DEFAULT_CAMPAIGN,
    store: Optional[RedemptionStore] = None,
) -> ValidationResult:
    """Validate code then email, returning the first failure."""
    store = store or get_redemption_store()

    result = validate_code(code, campaign, store=store)
    if not result.valid:
        return result

    return validate_email(email, campaign, store=store)


def mark_code_as_used(
    code: Any,
    email: Any,
    extra: Optional[Mapping[str, Any]] = None,
    store: Optional[RedemptionStore] = None,
) -> MutationResult:
    """
    Record a code as redeemed by `email`, overwriting any existing entry.

    Does not re-check the code; call validate_code first or use redeem_code.
    """
    store = store or get_redemption_store()
    if not isinstance(code, str) or not isinstance(email, str):
        logger.error(
            f"Cannot mark code as used: got {type(code).__name__} code and {type(email).__name__} email"
        )
        return MutationResult(success=False, error="code and email must be strings")

    record = build_record(code, email, extra)

    try:
        store.put_record(record)
    except PersistenceError as e:
        logger.error(f"Failed to mark code {record['code']} as used: {e}")
        return MutationResult(success=False, error=str(e))

    logger.info(f"Code {record['code']} marked as used by {mask_email(record['email'])}")
    return MutationResult(success=True)


def redeem_code(
    code: Any,
    email: Any,
    extra: Optional[Mapping[str, Any]] = None,
    campaign: Optional[str] = None,
    store: Optional[RedemptionStore] = None,
) -> ValidationResult:
    """
    Validate and record a redemption as one atomic step.

    The check and the insert run under the store's mutation lock, and the
    insert itself refuses existing codes, so two concurrent redemptions of
    the same code cannot both succeed.

    Returns:
        ValidationResult; on success details["record"] is the stored record
    """
    store = store or get_redemption_store()
    campaign = campaign or (extra or {}).get("campaign") or DEFAULT_CAMPAIGN

    with store.mutation_lock():
        result = validate_submission(code, email, campaign, store=store)
        if not result.valid:
            logger.info(
                f"Redemption rejected: {result.error}",
                extra={"campaign": campaign, "email": mask_email(str(email))},
            )
            return result

        record = build_record(code, email, extra, campaign=campaign)
        try:
            inserted = store.insert_if_absent(record)
        except PersistenceError as e:
            logger.error(f"Redemption of {record['code']} not recorded: {e}")
            return ValidationResult.fail(PERSISTENCE_ERROR, error_detail=str(e))

    if not inserted:
        return _already_redeemed(store.load().get(record["code"]))

    logger.info(
        f"Code {record['code']} redeemed by {mask_email(record['email'])}",
        extra={"campaign": campaign},
    )
    return ValidationResult.ok(record=record)


def get_statistics(
    campaign: Optional[str] = None,
    store: Optional[RedemptionStore] = None,
) -> StatsSummary:
    """
    Count redemptions.

    total_codes and unique_emails honour the campaign filter; by_campaign and
    by_website always cover the whole store.
    """
    store = store or get_redemption_store()
    entries = [e for e in store.load().values() if isinstance(e, dict)]

    filtered = [e for e in entries if e.get("campaign") == campaign] if campaign else entries

    by_campaign: Dict[str, int] = {}
    by_website: Dict[str, int] = {}
    for entry in entries:
        if entry.get("campaign"):
            by_campaign[entry["campaign"]] = by_campaign.get(entry["campaign"], 0) + 1
        if entry.get("website"):
            by_website[entry["website"]] = by_website.get(entry["website"], 0) + 1

    return {
        "total_codes": len(filtered),
        "unique_emails": len({e["email"] for e in filtered if e.get("email")}),
        "by_campaign": by_campaign,
        "by_website": by_website,
        "degraded": store.degraded,
    }
