"""
Matching: candidate generation, multi-factor scoring, and the match lifecycle.
"""
