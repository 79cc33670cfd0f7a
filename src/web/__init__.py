"""
Read-only status API
"""
