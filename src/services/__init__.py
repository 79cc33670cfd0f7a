"""
Bet pipeline, fetch loop and the core service facade
"""
