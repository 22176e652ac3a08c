"""
Shipping Gateway

Pluggable abstraction over shipping providers: labels, tracking, address
validation and cost estimation behind one session/system contract.
"""
__version__ = "1.0.0"
