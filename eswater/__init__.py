"""Essex & Suffolk Water smart meter add-on.

Logs into the ESWater customer portal with a headless browser, harvests the
API credentials the portal uses and polls hourly water usage.
"""

__version__ = "1.1.0"
