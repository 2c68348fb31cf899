"""
Services Module - streaming plumbing and chat handlers.
"""
