# feed.py
import random
from datetime import datetime, timedelta

SIZES = ["20FT", "40FT"]
TYPES = ["DRY", "REEFER", "OPEN"]
PRIORITIES = ["NORMAL", "HIGH"]
OWNERS = ["A. Singh", "R. Patel", "M. Chen", "K. Gomez", "S. Williams", "N. Okafor"]
COMPANIES = ["BlueWave Logistics", "HarborLine", "Nova Freight", "Atlas Shipping", "Summit Trade"]
MATERIALS = ["Steel Coils", "Apparel", "Electronics", "Food Grade", "Auto Parts", "Building Materials"]


def make_record(rng=random):
    """One synthetic inbound container record (no id; the yard assigns it)."""
    move_in = datetime.now() - timedelta(days=rng.randint(0, 5))
    move_out = move_in + timedelta(days=rng.randint(2, 7))
    return {
        "size": rng.choice(SIZES),
        "type": rng.choice(TYPES),
        "priority": "HIGH" if rng.random() < 0.2 else rng.choice(PRIORITIES),
        "ownerName": rng.choice(OWNERS),
        "companyName": rng.choice(COMPANIES),
        "material": rng.choice(MATERIALS),
        "moveInDate": move_in.isoformat(timespec="seconds"),
        "moveOutDate": move_out.isoformat(timespec="seconds"),
    }


def poll(count=5, rng=random):
    # Simulates a poll response from the gate system
    return [make_record(rng) for _ in range(count)]
