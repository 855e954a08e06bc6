# pvc_autoscaler/annotations.py
"""
Annotation keys understood and written by the autoscaler.

Policy annotations are set by users on a PersistentVolumeClaim to opt it into
autoscaling. Status annotations are written by the autoscaler itself.
"""

PREFIX = "pvc.autoscaling.io/"

# Policy
IS_ENABLED = PREFIX + "is-enabled"
THRESHOLD = PREFIX + "threshold"
INCREASE_BY = PREFIX + "increase-by"
MAX_CAPACITY = PREFIX + "max-capacity"
MIN_CAPACITY = PREFIX + "min-capacity"
MIN_STEP_ABSOLUTE = PREFIX + "min-step-absolute"
COOLDOWN_DURATION = PREFIX + "cooldown-duration"

# Status
LAST_CHECK = PREFIX + "last-check"
NEXT_CHECK = PREFIX + "next-check"
USED_SPACE_PERCENTAGE = PREFIX + "used-space"
FREE_SPACE_PERCENTAGE = PREFIX + "free-space"
USED_INODES_PERCENTAGE = PREFIX + "used-inodes"
FREE_INODES_PERCENTAGE = PREFIX + "free-inodes"
PREV_SIZE = PREFIX + "prev-size"
NEW_SIZE = PREFIX + "new-size"
CONDITIONS = PREFIX + "conditions"

DEFAULT_THRESHOLD = "10%"
DEFAULT_INCREASE_BY = "10%"

UNKNOWN_UTILIZATION_VALUE = "unknown"


def is_enabled(annotations) -> bool:
    """True when the is-enabled annotation is exactly "true"."""
    return (annotations or {}).get(IS_ENABLED) == "true"
