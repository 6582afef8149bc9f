"""relaydrop

Sends one file from a sender peer to a receiver peer through a websocket relay
that only forwards frames by identifier.
"""

__version__ = "0.1.0"
