"""
Core Module - configuration, constants and prompts.
"""
