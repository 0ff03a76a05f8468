"""
ViewSets for the custody API.

This module provides REST API endpoints for:
- OrderViewSet: Orders and their lifecycle actions
- EscrowViewSet: Buyer release and seller dispute of held funds
- RefundViewSet: Refund decisions
- DisputeViewSet: Dispute threads and mediation
- NotificationViewSet: The caller's custody notifications

URL Structure:
    /api/v1/payments/orders/                      GET, POST
    /api/v1/payments/orders/{id}/                 GET
    /api/v1/payments/orders/{id}/pay/             POST
    /api/v1/payments/orders/{id}/cancel/          POST
    /api/v1/payments/orders/{id}/processing/      POST
    /api/v1/payments/orders/{id}/deliver/         POST
    /api/v1/payments/orders/{id}/refunds/         POST
    /api/v1/payments/orders/{id}/disputes/        POST
    /api/v1/payments/escrow/{id}/                 GET
    /api/v1/payments/escrow/{id}/release/         POST
    /api/v1/payments/escrow/{id}/dispute/         POST
    /api/v1/payments/refunds/{id}/                GET
    /api/v1/payments/refunds/{id}/resolve/        POST
    /api/v1/payments/disputes/{id}/               GET
    /api/v1/payments/disputes/{id}/messages/      GET, POST
    /api/v1/payments/disputes/{id}/escalate/      POST
    /api/v1/payments/disputes/{id}/review/        POST
    /api/v1/payments/disputes/{id}/resolve/       POST
    /api/v1/payments/disputes/{id}/close/         POST
    /api/v1/payments/notifications/               GET
    /api/v1/payments/notifications/{id}/read/     POST

Design Decisions:
    - Views only parse input and shape output; the services own every
      permission, state and money rule
    - Querysets are scoped to the caller's orders (staff see everything)
      so list and detail never leak other users' data
    - Failures answer with the status code carried by the ServiceResult
"""

from __future__ import annotations

from django.db.models import Q
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.services import ServiceResult
from payments.apps import get_gateway_registry
from payments.models import Dispute, EscrowHold, Order, PaymentNotification, Refund
from payments.serializers import (
    DeliverSerializer,
    DisputeCreateSerializer,
    DisputeEscalateSerializer,
    DisputeMessageCreateSerializer,
    DisputeMessageSerializer,
    DisputeResolveSerializer,
    DisputeSerializer,
    EscrowDisputeSerializer,
    EscrowHoldSerializer,
    EscrowReleaseSerializer,
    OrderCreateSerializer,
    OrderSerializer,
    PaymentNotificationSerializer,
    PaySerializer,
    RefundRequestSerializer,
    RefundResolveSerializer,
    RefundSerializer,
)
from payments.services import (
    AuditContext,
    DisputeService,
    EscrowService,
    OrderService,
    PaymentService,
    RefundService,
)


# Router lookups only match UUIDs so malformed ids 404 before reaching a service
UUID_PATTERN = r"[0-9a-fA-F-]{36}"


def failure_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult."""
    body = {"error": result.error, "error_code": result.error_code}
    if result.errors:
        body["errors"] = result.errors
    return Response(body, status=result.status_code)


def party_filter(user, prefix: str = "") -> Q:
    """Rows whose order has the user as buyer or seller."""
    return Q(**{f"{prefix}buyer": user}) | Q(**{f"{prefix}seller": user})


# =============================================================================
# Orders
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_orders",
        summary="List orders",
        tags=["Payments - Orders"],
    ),
    retrieve=extend_schema(
        operation_id="get_order",
        summary="Get order",
        tags=["Payments - Orders"],
    ),
)
class OrderViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    ViewSet for orders.

    list:
        Orders where the caller is buyer or seller.

    create:
        Buy a listing. Fees are computed by the active payment profile.

    pay:
        Capture payment; funds go into escrow and the order becomes paid.

    cancel:
        Cancel an unfunded order (either party).

    processing / deliver:
        Seller progress updates.

    refunds / disputes:
        Open a refund request or a dispute on the order.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        queryset = Order.objects.select_related("buyer", "seller", "listing").prefetch_related(
            "transactions", "escrow_holds"
        )
        if not self.request.user.is_staff:
            queryset = queryset.filter(party_filter(self.request.user))
        return queryset.order_by("-created_at")

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == "create":
            return OrderCreateSerializer
        if self.action == "pay":
            return PaySerializer
        if self.action == "deliver":
            return DeliverSerializer
        if self.action == "refunds":
            return RefundRequestSerializer
        if self.action == "disputes":
            return DisputeCreateSerializer
        return OrderSerializer

    def _order_response(self, result: ServiceResult, success_status=status.HTTP_200_OK) -> Response:
        if not result.success:
            return failure_response(result)
        serializer = OrderSerializer(result.data, context={"request": self.request})
        return Response(serializer.data, status=success_status)

    @extend_schema(
        operation_id="create_order",
        summary="Create order",
        tags=["Payments - Orders"],
        request=OrderCreateSerializer,
        responses={201: OrderSerializer},
    )
    def create(self, request):
        """Create an order for a listing."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = OrderService.create_order(
            buyer=request.user,
            listing_id=data["listing_id"],
            quantity=data["quantity"],
            notes=data.get("notes"),
            fee_policy=get_gateway_registry().fee_policy,
            context=AuditContext.from_request(request),
        )
        return self._order_response(result, status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="pay_order",
        summary="Capture payment into escrow",
        tags=["Payments - Orders"],
        request=PaySerializer,
        responses={200: OrderSerializer},
    )
    @action(detail=True, methods=["post"])
    def pay(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        registry = get_gateway_registry()
        result = PaymentService.capture_payment(
            order_id=pk,
            caller=request.user,
            payment_method_ref=serializer.validated_data["payment_method_ref"],
            gateway=registry.gateway,
            auto_release_hours=registry.profile.auto_release_hours,
            context=AuditContext.from_request(request),
        )
        return self._order_response(result)

    @extend_schema(
        operation_id="cancel_order",
        summary="Cancel order",
        tags=["Payments - Orders"],
        request=None,
        responses={200: OrderSerializer},
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        result = OrderService.cancel_order(
            order_id=pk,
            caller=request.user,
            context=AuditContext.from_request(request),
        )
        return self._order_response(result)

    @extend_schema(
        operation_id="mark_order_processing",
        summary="Mark order in progress",
        tags=["Payments - Orders"],
        request=None,
        responses={200: OrderSerializer},
    )
    @action(detail=True, methods=["post"])
    def processing(self, request, pk=None):
        result = OrderService.mark_processing(
            order_id=pk,
            caller=request.user,
            context=AuditContext.from_request(request),
        )
        return self._order_response(result)

    @extend_schema(
        operation_id="mark_order_delivered",
        summary="Mark order delivered",
        tags=["Payments - Orders"],
        request=DeliverSerializer,
        responses={200: OrderSerializer},
    )
    @action(detail=True, methods=["post"])
    def deliver(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OrderService.mark_delivered(
            order_id=pk,
            caller=request.user,
            notes=serializer.validated_data.get("notes"),
            context=AuditContext.from_request(request),
        )
        return self._order_response(result)

    @extend_schema(
        operation_id="request_refund",
        summary="Request refund",
        tags=["Payments - Refunds"],
        request=RefundRequestSerializer,
        responses={201: RefundSerializer},
    )
    @action(detail=True, methods=["post"])
    def refunds(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RefundService.request_refund(
            order_id=pk,
            caller=request.user,
            reason=data["reason"],
            amount=data.get("amount"),
            notes=data.get("notes"),
            context=AuditContext.from_request(request),
        )
        if not result.success:
            return failure_response(result)
        return Response(RefundSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="create_dispute",
        summary="Open dispute",
        tags=["Payments - Disputes"],
        request=DisputeCreateSerializer,
        responses={201: DisputeSerializer},
    )
    @action(detail=True, methods=["post"])
    def disputes(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = DisputeService.create_dispute(
            order_id=pk,
            caller=request.user,
            reason=data["reason"],
            description=data["description"],
            evidence=data.get("evidence"),
            requested_amount=data.get("requested_amount"),
            context=AuditContext.from_request(request),
        )
        if not result.success:
            return failure_response(result)
        return Response(DisputeSerializer(result.data).data, status=status.HTTP_201_CREATED)


# =============================================================================
# Escrow
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_escrow_holds",
        summary="List escrow holds",
        tags=["Payments - Escrow"],
    ),
    retrieve=extend_schema(
        operation_id="get_escrow_hold",
        summary="Get escrow hold",
        tags=["Payments - Escrow"],
    ),
)
class EscrowViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for escrow holds.

    release:
        Buyer confirms delivery; the seller's payout leaves custody.

    dispute:
        Seller freezes the hold pending mediation.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        queryset = EscrowHold.objects.select_related("order")
        if not self.request.user.is_staff:
            queryset = queryset.filter(party_filter(self.request.user, "order__"))
        return queryset.order_by("-created_at")

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == "release":
            return EscrowReleaseSerializer
        if self.action == "dispute":
            return EscrowDisputeSerializer
        return EscrowHoldSerializer

    @extend_schema(
        operation_id="release_escrow",
        summary="Release escrow to seller",
        tags=["Payments - Escrow"],
        request=EscrowReleaseSerializer,
        responses={200: EscrowHoldSerializer},
    )
    @action(detail=True, methods=["post"])
    def release(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = EscrowService.release_escrow(
            escrow_id=pk,
            caller=request.user,
            gateway=get_gateway_registry().gateway,
            reason=data.get("reason", ""),
            amount=data.get("amount"),
            context=AuditContext.from_request(request),
        )
        if not result.success:
            return failure_response(result)
        return Response(EscrowHoldSerializer(result.data).data)

    @extend_schema(
        operation_id="dispute_escrow",
        summary="Dispute escrow",
        tags=["Payments - Escrow"],
        request=EscrowDisputeSerializer,
        responses={200: EscrowHoldSerializer},
    )
    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = EscrowService.dispute_escrow(
            escrow_id=pk,
            caller=request.user,
            reason=data["reason"],
            notes=data.get("notes"),
            context=AuditContext.from_request(request),
        )
        if not result.success:
            return failure_response(result)
        return Response(EscrowHoldSerializer(result.data).data)


# =============================================================================
# Refunds
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_refunds",
        summary="List refunds",
        tags=["Payments - Refunds"],
    ),
    retrieve=extend_schema(
        operation_id="get_refund",
        summary="Get refund",
        tags=["Payments - Refunds"],
    ),
)
class RefundViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for refunds.

    resolve:
        Seller approves (money goes back through the gateway) or rejects.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        queryset = Refund.objects.select_related("order", "requested_by", "processed_by")
        if not self.request.user.is_staff:
            queryset = queryset.filter(party_filter(self.request.user, "order__"))
        return queryset.order_by("-requested_at")

    def get_serializer_class(self):
        if self.action == "resolve":
            return RefundResolveSerializer
        return RefundSerializer

    @extend_schema(
        operation_id="resolve_refund",
        summary="Approve or reject refund",
        tags=["Payments - Refunds"],
        request=RefundResolveSerializer,
        responses={200: RefundSerializer},
    )
    @action(detail=True, methods=["post"])
    def resolve(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RefundService.resolve_refund(
            refund_id=pk,
            caller=request.user,
            decision=data["decision"],
            gateway=get_gateway_registry().gateway,
            notes=data.get("notes"),
            context=AuditContext.from_request(request),
        )
        if not result.success:
            return failure_response(result)
        return Response(RefundSerializer(result.data).data)


# =============================================================================
# Disputes
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_disputes",
        summary="List disputes",
        tags=["Payments - Disputes"],
    ),
    retrieve=extend_schema(
        operation_id="get_dispute",
        summary="Get dispute",
        tags=["Payments - Disputes"],
    ),
)
class DisputeViewSet(viewsets.ReadOnlyModelViewSet):
    """
    ViewSet for disputes.

    Parties see their own disputes; mediators (staff) see all of them.

    messages:
        GET the thread (internal notes only for mediators) or POST to it.

    escalate:
        Either party hands the dispute to mediation.

    review / resolve / close:
        Mediator actions. resolve settles the escrow per the resolution.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_PATTERN

    def get_queryset(self):
        queryset = Dispute.objects.select_related(
            "order", "created_by", "respondent", "resolved_by"
        )
        if not self.request.user.is_staff:
            queryset = queryset.filter(party_filter(self.request.user, "order__"))
        return queryset.order_by("-created_at")

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == "messages":
            if self.request.method == "POST":
                return DisputeMessageCreateSerializer
            return DisputeMessageSerializer
        if self.action == "escalate":
            return DisputeEscalateSerializer
        if self.action == "resolve":
            return DisputeResolveSerializer
        return DisputeSerializer

    def _dispute_response(self, result: ServiceResult) -> Response:
        if not result.success:
            return failure_response(result)
        return Response(DisputeSerializer(result.data).data)

    @extend_schema(
        operation_id="dispute_messages",
        summary="List or post dispute messages",
        tags=["Payments - Disputes"],
        request=DisputeMessageCreateSerializer,
        responses={200: DisputeMessageSerializer(many=True), 201: DisputeMessageSerializer},
    )
    @action(detail=True, methods=["get", "post"])
    def messages(self, request, pk=None):
        if request.method == "GET":
            result = DisputeService.list_dispute_messages(dispute_id=pk, caller=request.user)
            if not result.success:
                return failure_response(result)
            return Response(DisputeMessageSerializer(result.data, many=True).data)

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = DisputeService.add_dispute_message(
            dispute_id=pk,
            caller=request.user,
            message=data["message"],
            attachments=data.get("attachments"),
            internal=data.get("internal", False),
            context=AuditContext.from_request(request),
        )
        if not result.success:
            return failure_response(result)
        return Response(
            DisputeMessageSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(
        operation_id="escalate_dispute",
        summary="Escalate dispute",
        tags=["Payments - Disputes"],
        request=DisputeEscalateSerializer,
        responses={200: DisputeSerializer},
    )
    @action(detail=True, methods=["post"])
    def escalate(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DisputeService.escalate_dispute(
            dispute_id=pk,
            caller=request.user,
            reason=serializer.validated_data["reason"],
            context=AuditContext.from_request(request),
        )
        return self._dispute_response(result)

    @extend_schema(
        operation_id="review_dispute",
        summary="Start mediator review",
        tags=["Payments - Disputes"],
        request=None,
        responses={200: DisputeSerializer},
    )
    @action(detail=True, methods=["post"])
    def review(self, request, pk=None):
        result = DisputeService.start_review(
            dispute_id=pk,
            caller=request.user,
            context=AuditContext.from_request(request),
        )
        return self._dispute_response(result)

    @extend_schema(
        operation_id="resolve_dispute",
        summary="Resolve dispute",
        tags=["Payments - Disputes"],
        request=DisputeResolveSerializer,
        responses={200: DisputeSerializer},
    )
    @action(detail=True, methods=["post"])
    def resolve(self, request, pk=None):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = DisputeService.resolve_dispute(
            dispute_id=pk,
            caller=request.user,
            resolution=data["resolution"],
            gateway=get_gateway_registry().gateway,
            amount=data.get("amount"),
            notes=data.get("notes", ""),
            context=AuditContext.from_request(request),
        )
        return self._dispute_response(result)

    @extend_schema(
        operation_id="close_dispute",
        summary="Close dispute",
        tags=["Payments - Disputes"],
        request=None,
        responses={200: DisputeSerializer},
    )
    @action(detail=True, methods=["post"])
    def close(self, request, pk=None):
        result = DisputeService.close_dispute(
            dispute_id=pk,
            caller=request.user,
            context=AuditContext.from_request(request),
        )
        return self._dispute_response(result)


# =============================================================================
# Notifications
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_payment_notifications",
        summary="List notifications",
        tags=["Payments - Notifications"],
    ),
)
class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """The caller's custody notifications, newest first."""

    permission_classes = [IsAuthenticated]
    serializer_class = PaymentNotificationSerializer

    def get_queryset(self):
        return PaymentNotification.objects.filter(recipient=self.request.user).order_by(
            "-created_at"
        )

    @extend_schema(
        operation_id="mark_payment_notification_read",
        summary="Mark notification as read",
        tags=["Payments - Notifications"],
        request=None,
        responses={200: PaymentNotificationSerializer},
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        notification = self.get_object()
        notification.mark_read()
        return Response(self.get_serializer(notification).data)
