"""
Entitlements Test Suite

Tests for:
- Usage counters and quota enforcement
- Entitlement gate and lazy expiry
- Payment signatures, order lifecycle and fulfilment
- Role unlocks and course enrollment
- Guarded create/publish actions
- API routes
"""
