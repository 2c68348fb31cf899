"""
API Module - FastAPI application, routes, middleware and chat services.
"""
