"""
HTTP layer: routes, request/response models and middleware.
"""
