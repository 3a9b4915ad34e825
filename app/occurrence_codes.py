"""Shared occurrence code constants for tracking metrics."""

DELIVERED = "1"
IN_TRANSIT = "59"
NO_MOVEMENT = "50"
AT_FLOOR = "82"

DELIVERED_LABEL = "entregue"

# Failed delivery attempts ("insucessos").
FAILURE_CODES = (
    "26",
    "18",
    "46",
    "23",
    "25",
    "27",
    "28",
    "65",
    "66",
    "33",
)

PROJECTION_CODES = (DELIVERED, IN_TRANSIT)


def is_delivered(code: str) -> bool:
    return code == DELIVERED or code.lower() == DELIVERED_LABEL


def is_offense(code: str) -> bool:
    """Any non-empty code other than delivered or in transit."""
    return bool(code) and code not in (DELIVERED, IN_TRANSIT)
