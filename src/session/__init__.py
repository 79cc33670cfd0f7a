"""
Session ownership: registry of live sessions and their durable snapshots
"""
