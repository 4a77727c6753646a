"""
Copy Trader.

Replicates followed traders' perpetual positions into a follower account,
scaled to the follower's capital, and keeps them synchronized.
"""

__version__ = "0.1.0"
