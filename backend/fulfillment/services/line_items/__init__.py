"""
Line item ledger.
"""
