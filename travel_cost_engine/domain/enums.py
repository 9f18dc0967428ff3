"""Domain enumerations."""

import enum


class CalculationType(str, enum.Enum):
    DISTANCE = "distance"
    ALLOWANCE = "allowance"
    TRAVEL_COST = "travel_cost"


# Bumped whenever distance or allowance rules change, so historical
# audit records can be told apart from current ones.
CALCULATION_VERSION = "1.0"
