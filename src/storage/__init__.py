"""
Account persistence
"""
