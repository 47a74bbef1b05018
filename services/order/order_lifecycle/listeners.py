"""
Order Service — 応答リスナー

Validator / Allocator からの応答チャネルをオーケストレーターに結びつける。
"""

import logging

from pydantic import ValidationError

from .events import (
    ALLOCATION_RESPONSE,
    VALIDATION_RESPONSE,
    AllocateOrderResult,
    ValidateOrderResult,
)
from .gateway import MessageGateway
from .orchestrator import OrderLifecycleOrchestrator

logger = logging.getLogger(__name__)


def register_listeners(
    gateway: MessageGateway,
    orchestrator: OrderLifecycleOrchestrator,
) -> None:

    async def on_validation_result(payload: dict) -> None:
        try:
            result = ValidateOrderResult.model_validate(payload)
        except ValidationError:
            logger.error("Dropped invalid validation result: %s", payload)
            return

        logger.debug("Validate order result [%s] for order [%s]", result.is_valid, result.order_id)
        await orchestrator.process_validation_result(result.order_id, result.is_valid)

    async def on_allocation_result(payload: dict) -> None:
        try:
            result = AllocateOrderResult.model_validate(payload)
        except ValidationError:
            logger.error("Dropped invalid allocation result: %s", payload)
            return

        logger.debug("Allocation result [%s] for order [%s]", result.outcome.value, result.order_id)
        await orchestrator.process_allocation_outcome(result.order_id, result.outcome, result.lines)

    gateway.on_message(VALIDATION_RESPONSE, on_validation_result)
    gateway.on_message(ALLOCATION_RESPONSE, on_allocation_result)
