"""
VN Tax Core - Vietnamese VAT, CIT and PIT rules engine
"""

__version__ = "0.1.0"
