"""
Payments app: transaction custody for marketplace orders.

This app handles:
- Order creation with platform and processing fees
- Payment capture through a swappable gateway backend
- Escrow custody until release, refund or dispute resolution
- Refund requests and seller decisions
- Dispute mediation with message threads
- Risk scoring, audit trail and notifications

Related apps:
    - listings: What buyers purchase
    - core: Base models, exceptions and the service pattern

Usage:
    from payments.services import OrderService, PaymentService

    result = OrderService.create_order(buyer=user, listing_id=listing.id)
    result = PaymentService.capture_payment(
        order_id=result.data.id,
        caller=user,
        payment_method_ref="pm_test_visa",
        gateway=get_gateway_registry().gateway,
    )
"""
