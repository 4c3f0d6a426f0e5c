"""
Application-wide constants for the promotion engine.

This module contains the transition statuses and the default class
progression used when a school's catalog is loaded without explicit names.
"""

STATUS_PROMOTED = "Promoted"
STATUS_DROP_OUT = "DropOut"
STATUS_GRADUATED = "Graduated"

TRANSITION_STATUSES = (STATUS_PROMOTED, STATUS_DROP_OUT, STATUS_GRADUATED)

# Operator decisions accepted on the wire. "Drop Out" is the label the
# promotion screen sends; both spellings map to the same decision.
DECISION_ALIASES = {
    "promoted": STATUS_PROMOTED,
    "promote": STATUS_PROMOTED,
    "dropout": STATUS_DROP_OUT,
    "drop out": STATUS_DROP_OUT,
    "drop": STATUS_DROP_OUT,
}

DEFAULT_SECTION = "A"

DEFAULT_CLASS_PROGRESSION = [
    "Nursery", "LKG", "UKG",
    "I", "II", "III", "IV", "V", "VI",
    "VII", "VIII", "IX", "X", "XI", "XII",
]

DEFAULT_DIRECTORY_TIMEOUT_SECONDS = 10.0
MAX_DIRECTORY_TIMEOUT_SECONDS = 120.0
