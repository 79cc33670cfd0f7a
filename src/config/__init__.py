"""
Configuration loading and validation
"""
