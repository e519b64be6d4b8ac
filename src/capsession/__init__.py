"""
capsession - packet capture session manager

Starts, stops, saves and discards raw packet capture sessions, delegating the
capture itself to tcpdump and format conversion to an external
post-processing tool.
"""

__version__ = '1.0.0'
