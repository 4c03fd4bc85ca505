"""
Core business logic components.

This package contains the proxy building blocks:
- Bearer token authorization
- TTL-indexed proxy store
- Background expiry sweeper
- Registration and forwarding handlers
- Metrics collection
"""
