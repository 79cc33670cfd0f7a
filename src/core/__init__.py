"""
Logging setup and service wiring
"""
