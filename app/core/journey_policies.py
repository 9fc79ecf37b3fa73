"""Journey tracking and safety alert policy constants."""

from __future__ import annotations

# A sample counts as moving above this speed (km/h)
MOVING_SPEED_KMH = 1.0

# Battery thresholds (percent)
LOW_BATTERY_PERCENT = 20
CRITICAL_BATTERY_PERCENT = 10

# Unexpected stop: this many stationary samples inside the trailing window
STOP_WINDOW_SECONDS = 10 * 60
STOP_MIN_SAMPLES = 3

# Distance to destination treated as "basically there" when no route distance is known
ARRIVAL_RADIUS_M = 100.0
FALLBACK_PROGRESS_NEAR = 0.95
FALLBACK_PROGRESS_FAR = 0.1

# Distance from the nearest planned waypoint that counts as leaving the route
ROUTE_DEVIATION_M = 500.0

# Speed limits per transport mode (km/h); unknown modes use the default
SPEED_LIMITS_KMH = {
    "walking": 25.0,
    "cycling": 50.0,
    "public_transport": 130.0,
    "driving": 140.0,
}
DEFAULT_SPEED_LIMIT_KMH = 140.0

# Safety score = max(0, 100 - penalty * alert_count)
SAFETY_SCORE_MAX = 100
SAFETY_SCORE_PENALTY = 10

# Linking codes
LINKING_CODE_DIGITS = 6
