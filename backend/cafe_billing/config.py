# backend/cafe_billing/config.py
from __future__ import annotations
import os


# PlayStation hourly rates by controller count (in cents).
# The 4-controller rate has been recorded as both 30 and 35 in the field;
# 35 is canonical here. Override with PLAYSTATION_HOURLY_RATES or per device.
PLAYSTATION_RATE_1_CENTS = 2000
PLAYSTATION_RATE_2_CENTS = 2500
PLAYSTATION_RATE_3_CENTS = 3000
PLAYSTATION_RATE_4_PLUS_CENTS = 3500

DEFAULT_PLAYSTATION_HOURLY_RATES_CENTS = {
    1: PLAYSTATION_RATE_1_CENTS,
    2: PLAYSTATION_RATE_2_CENTS,
    3: PLAYSTATION_RATE_3_CENTS,
    4: PLAYSTATION_RATE_4_PLUS_CENTS,
}

DEFAULT_COMPUTER_HOURLY_RATE_CENTS = 1500


def parse_rate_table(raw: str | None) -> dict[int, int]:
    """
    Parse "1:2000,2:2500,3:3000,4:3500" into {controllers: cents_per_hour}.

    Returns the default table for an empty value.
    """
    if not raw or not raw.strip():
        return dict(DEFAULT_PLAYSTATION_HOURLY_RATES_CENTS)

    table: dict[int, int] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        count, _, cents = chunk.partition(":")
        try:
            table[int(count)] = int(cents)
        except ValueError:
            raise ValueError(f"Invalid rate entry {chunk!r}; expected '<controllers>:<cents>'")
    if not table:
        raise ValueError("Rate table is empty")
    return table


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///cafe_billing.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tariffs
    PLAYSTATION_HOURLY_RATES_CENTS = parse_rate_table(os.environ.get("PLAYSTATION_HOURLY_RATES"))
    COMPUTER_HOURLY_RATE_CENTS = int(os.environ.get("COMPUTER_HOURLY_RATE_CENTS", DEFAULT_COMPUTER_HOURLY_RATE_CENTS))

    # Session costs are rounded per segment to this unit, and a session that
    # ran at all is never charged less than the minimum.
    COST_ROUNDING_UNIT_CENTS = int(os.environ.get("COST_ROUNDING_UNIT_CENTS", 100))
    MIN_SESSION_CHARGE_CENTS = int(os.environ.get("MIN_SESSION_CHARGE_CENTS", 100))

    MAX_CONTROLLERS = int(os.environ.get("MAX_CONTROLLERS", 4))

    # Lock timeouts and optimistic-lock conflicts re-run the write this many times
    WRITE_RETRY_ATTEMPTS = int(os.environ.get("WRITE_RETRY_ATTEMPTS", 3))
    WRITE_RETRY_BACKOFF_SECONDS = float(os.environ.get("WRITE_RETRY_BACKOFF_SECONDS", 0.1))

    # Public receipt pages poll at this interval
    RECEIPT_REFRESH_SECONDS = int(os.environ.get("RECEIPT_REFRESH_SECONDS", 30))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
