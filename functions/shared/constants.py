"""
Shared constants for the Golden Ticket backend.
"""

import os
import re

# Campaign defaults
DEFAULT_CAMPAIGN = os.environ.get("DEFAULT_CAMPAIGN", "goldenticket_2025")
DEFAULT_WEBSITE = "goldenticket.sweetsausallerwelt.de"
DEFAULT_COUNTRY = "DE"
DEFAULT_SOURCE = "golden_ticket"

# Ticket codes: 8 characters, uppercase letters and digits
CODE_PATTERN = re.compile(r"^[A-Z0-9]{8}$")

# local@domain.tld without whitespace
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Placeholder for diagnostic fields missing from legacy records
UNKNOWN = "unknown"

# Redemption store
DEFAULT_STORE_PATH = os.path.join("data", "used-codes.json")
DEFAULT_REDEMPTIONS_TABLE = "goldenticket-redemptions"

# Fields of a redemption record that metadata may never override
RESERVED_RECORD_FIELDS = ("code", "email", "timestamp")

# Submission fields the registration form must provide
REQUIRED_SUBMISSION_FIELDS = ["firstName", "lastName", "phone", "street", "postalCode", "city"]

# External APIs
KLAVIYO_API_BASE = "https://a.klaviyo.com/api"
KLAVIYO_REVISION = "2024-10-15"
MAILCHIMP_API_TEMPLATE = "https://{datacenter}.api.mailchimp.com/3.0"

# Klaviyo event and subscription source
REDEMPTION_EVENT_NAME = "Golden Ticket Redeemed"
SUBSCRIPTION_SOURCE = "Golden Ticket Website"

# Timeouts (seconds)
KLAVIYO_TIMEOUT = 15.0
MAILCHIMP_TIMEOUT = 15.0
SHEETS_TIMEOUT = 8.0

# Local time zone for human-readable spreadsheet rows
SHEETS_TIMEZONE = "Europe/Berlin"
