"""
External TTL cache for supplemental market data
"""
