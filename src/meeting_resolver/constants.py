"""Centralized constants for the meeting resolver."""

# Validation
DURATION_TOLERANCE_MINUTES = 15

# Report reasons
REASON_DURATION_CHANGE = "Duration change too large"
REASON_UNKNOWN_MEETING = "Meeting id not found in conflict set"
REASON_ATTENDEE_BUSY = "Proposed time introduces conflicts for attendees"
REASON_NO_CANDIDATES = "No candidate slots found"
REASON_SLOT_TAKEN = "All valid slots overlap higher-priority bookings"

# Run defaults
DEFAULT_WINDOW_HOURS = 24
DEFAULT_TIMEZONE = "America/Los_Angeles"

# Slot finder
SLOT_STEP_MINUTES = 15
MAX_FOUND_SLOTS = 5
