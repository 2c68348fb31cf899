"""
Middleware Module - request context, size limits and exception handlers.
"""
