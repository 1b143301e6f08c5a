"""
Terminal system resource monitor for macOS and Linux developer machines.
"""

__all__ = ["cli", "monitor", "system_state", "sources"]
__version__ = "0.1.0"
