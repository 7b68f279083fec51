"""Tools for inspecting captured external control traffic.

This package contains utilities for decoding stream datagrams recorded from a
client or a packet capture.
"""

__all__ = ["analyze"]
