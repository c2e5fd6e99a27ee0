"""
Core utilities: errors, run locks, pagination and decimal helpers.

Cross-cutting pieces shared by the ledger, matching, risk, drift and API layers.
"""
