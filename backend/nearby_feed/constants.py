# backend/nearby_feed/constants.py

"""
Global constants used across modules, including a single User-Agent string
sent with every outbound places request.
"""

USER_AGENT = "nearby-feed/0.1 (+https://github.com/nearby-feed/nearby-feed)"

R_EARTH_KM = 6_371.0
