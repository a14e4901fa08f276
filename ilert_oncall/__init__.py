"""iLert on-call add-on.

Mirrors iLert on-call, alert and incident state into Home Assistant and
exposes acknowledge/mute controls.
"""

__version__ = "1.4.0"
