"""
Login state machine, passcode/credential sub-flows and session heartbeat
"""
