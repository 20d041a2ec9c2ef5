# lookup.py
import pandas as pd

SEARCH_FIELDS = {
    "container": "id",
    "company": "companyName",
    "owner": "ownerName",
}

COLUMNS = ["id", "status", "slotId", "size", "type", "priority", "ownerName",
           "companyName", "material", "moveInDate", "moveOutDate"]


def containers_frame(containers):
    """DataFrame with one row per container record."""
    rows = [c.to_dict() for c in containers.values()]
    return pd.DataFrame(rows, columns=COLUMNS)


def _column(search_type):
    if search_type not in SEARCH_FIELDS:
        raise ValueError(f"Unknown search type {search_type!r}; expected one of {sorted(SEARCH_FIELDS)}")
    return SEARCH_FIELDS[search_type]


def search(containers, search_type, value):
    """Exact, case-insensitive match of value against the chosen field."""
    column = _column(search_type)
    df = containers_frame(containers)
    needle = (value or "").strip().lower()
    if not needle:
        return df.iloc[0:0]
    mask = df[column].fillna("").astype(str).str.lower() == needle
    return df[mask].reset_index(drop=True)


def search_options(containers, search_type):
    column = _column(search_type)
    values = containers_frame(containers)[column].dropna()
    return sorted(v for v in values.astype(str).unique() if v)
