"""
GeoTrace - traceroute with live geolocated hops.

Runs the system traceroute, parses its output as it arrives and streams each
hop, enriched with an approximate location, to HTTP and WebSocket clients.
"""

__version__ = "1.0.0"
