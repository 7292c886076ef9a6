from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from order_engine.config import settings
from order_engine.container import build_lifecycle, pricing_config
from order_engine.database import get_unit_of_work
from order_engine.presentation.schemas import (
    CreateOrderRequest, OrderResponse, ConfirmOrderRequest, ReasonRequest, TransitionResponse,
    OrderStatusResponse, HistoryResponse, CouponValidationRequest, CouponValidationResponse, ErrorResponse
)
from order_engine.application.create_order import CreateOrderUseCase, CreateOrderDTO, ValidateCouponUseCase
from order_engine.application.get_order import GetOrderUseCase
from order_engine.application.lifecycle import OrderLifecycleManager
from order_engine.domain.exceptions import InvalidCouponError, OrderNotFoundError
from order_engine.domain.history import CANCELLATION_REASONS, status_description
from order_engine.infrastructure.kafka_producer import KafkaProducerClient

router = APIRouter()

kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)


# Use case factories
def get_create_order_use_case(uow=Depends(get_unit_of_work)):
    return CreateOrderUseCase(uow, pricing_config())


def get_get_order_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_validate_coupon_use_case(uow=Depends(get_unit_of_work)):
    return ValidateCouponUseCase(uow)


def get_lifecycle_manager(uow=Depends(get_unit_of_work)):
    return build_lifecycle(uow, kafka_producer)


def _transition_response(result):
    response = TransitionResponse.from_result(result)
    if result.errors:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=response.model_dump(mode="json"))
    return response


@router.post(
    "/orders",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED
)
async def create_order(
    request: CreateOrderRequest,
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Create a pending order with computed totals"""
    try:
        order = await use_case(CreateOrderDTO(**request.model_dump()))
        return OrderResponse.from_domain(order)
    except InvalidCouponError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order(
    order_id: str,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.get(
    "/orders/{order_id}/history",
    response_model=HistoryResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order_history(
    order_id: str,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    try:
        order = await use_case(order_id)
        return HistoryResponse(order_id=order.order_id, entries=order.action_history)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.get(
    "/orders/{order_id}/status",
    response_model=OrderStatusResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order_status(
    order_id: str,
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager)
):
    """Order with current stock levels and shipment tracking"""
    try:
        report = await lifecycle.get_order_status(order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    return OrderStatusResponse(
        order=OrderResponse.from_domain(report.order),
        status_description=status_description(report.order.order_status),
        stock_status=report.stock_status,
        tracking_info=report.tracking_info,
        warnings=report.warnings
    )


@router.post(
    "/orders/{order_id}/confirm",
    response_model=TransitionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": TransitionResponse}}
)
async def confirm_order(
    order_id: str,
    request: ConfirmOrderRequest,
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager)
):
    """Reserve stock and confirm a pending order"""
    try:
        result = await lifecycle.confirm(order_id, request.performed_by, details=request.details)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    return _transition_response(result)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=TransitionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": TransitionResponse}}
)
async def cancel_order(
    order_id: str,
    request: ReasonRequest,
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager)
):
    try:
        result = await lifecycle.cancel(order_id, request.performed_by, request.reason)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    return _transition_response(result)


@router.post(
    "/orders/{order_id}/refund",
    response_model=TransitionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": TransitionResponse}}
)
async def refund_order(
    order_id: str,
    request: ReasonRequest,
    lifecycle: OrderLifecycleManager = Depends(get_lifecycle_manager)
):
    try:
        result = await lifecycle.refund(order_id, request.performed_by, request.reason)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    return _transition_response(result)


@router.post("/coupons/validate", response_model=CouponValidationResponse)
async def validate_coupon(
    request: CouponValidationRequest,
    use_case: ValidateCouponUseCase = Depends(get_validate_coupon_use_case)
):
    """Preview a coupon against a cart subtotal"""
    result = await use_case(request.code, request.cart_subtotal)
    return CouponValidationResponse(**result.model_dump())


@router.get("/cancellation-reasons", response_model=list[str])
async def get_cancellation_reasons():
    return CANCELLATION_REASONS
