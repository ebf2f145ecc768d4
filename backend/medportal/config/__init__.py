"""Application wiring modules.

- middleware: CORS and request-id middleware, exception handlers
- startup: database bootstrap on application startup
"""
