"""
Utils Package

Provides utility modules for:
- validation_errors: Structured 422 responses for request validation
"""
