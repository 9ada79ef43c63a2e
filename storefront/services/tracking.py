import random
import time
from typing import Optional

# Placeholder for real carrier integration: carrier display name -> 2-letter code
CARRIER_CODES = {
    "CJ대한통운": "CJ",
    "한진택배": "HJ",
    "롯데택배": "LT",
    "우체국택배": "KP",
}

CARRIER_ALIASES = {
    "CJ": "CJ",
    "HANJIN": "HJ",
    "LOTTE": "LT",
    "KOREA_POST": "KP",
}

DEFAULT_CARRIER_CODE = "CJ"


def generate_carrier(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(list(CARRIER_CODES))


def carrier_code(carrier: Optional[str]) -> str:
    if not carrier:
        return DEFAULT_CARRIER_CODE
    return CARRIER_CODES.get(carrier) or CARRIER_ALIASES.get(carrier.upper(), DEFAULT_CARRIER_CODE)


def generate_tracking_number(
    carrier: Optional[str] = None,
    *,
    now_ms: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """<2-letter carrier code><last 8 digits of unix ms><3-digit zero-padded random>"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = (rng or random).randrange(1000)
    return f"{carrier_code(carrier)}{str(now_ms)[-8:]}{suffix:03d}"
