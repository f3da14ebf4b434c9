"""
Story Verification API Module

FastAPI backend providing REST endpoints for:
- Running story evaluations against a checkout
- Inspecting and invalidating the story evidence cache
"""
