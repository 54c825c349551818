"""
GeoLite2 → MikroTik address-list sync.

Keeps RouterOS firewall address lists in step with the per-country IPv4
blocks published in the MaxMind GeoLite2 Country dataset.

License: MIT
"""

__version__ = "1.2.0"
