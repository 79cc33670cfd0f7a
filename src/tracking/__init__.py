"""
Bet ledger
"""
