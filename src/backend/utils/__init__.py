"""
Utilities Module - logging, JSON helpers and client construction.
"""
