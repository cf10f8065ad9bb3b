"""
HourFlow Entitlements Test Suite

Tests for:
- Trial clock and first launch store
- Encrypted subscription cache
- Remote billing authority client
- Feature access policy
- Resolver ordering and fallbacks
- Restore / verify flows and recheck triggers

Run tests with:
    pytest tests/ -v

Run unit tests only:
    pytest tests/ -v -m "not integration"
"""
