"""
Tests for the payments app.

Service tests drive real services against SimulatorGateway fixtures
(see conftest.py); view tests go through the DRF router, and webhook
tests post signed events to the Stripe endpoint.

Usage:
    pytest app/payments/tests/
    pytest app/payments/tests/test_escrow_service.py
"""
