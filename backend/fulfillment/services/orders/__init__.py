"""
Order lifecycle: transition table, state machine and order service.
"""
