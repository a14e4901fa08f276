"""Azure Dynamic DNS add-on.

Keeps A/AAAA records in Azure DNS zones pointed at the current public IP
and reports the result over MQTT.
"""

__version__ = "1.2.0"
