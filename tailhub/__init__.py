"""
TailHub - keeps BLE tails connected and drives them from OSC events
"""

__version__ = "1.0.0"
