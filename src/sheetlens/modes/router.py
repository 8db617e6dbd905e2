"""Router for directing proposed operations by autonomy mode."""

import logging
from typing import TYPE_CHECKING, Optional

from ..config import settings
from ..errors import ApplyExecutionError, ParseError
from ..ops.models import ToolResponse, ToolStatus
from ..snapshot.models import AISuggestedOperation
from . import AutonomyConfig, AutonomyMode, ProposeRequest, QueueActionRequest, preset_for
from .policy import AutonomyPolicy, DecisionKind

if TYPE_CHECKING:
    from ..ops.engine import SheetLensEngine

logger = logging.getLogger(__name__)


class OperationRouter:
    """Routes each proposed operation to execution, preview, approval or rejection."""

    def __init__(
        self,
        engine: "SheetLensEngine",
        configs: Optional[dict[AutonomyMode, AutonomyConfig]] = None,
    ):
        """
        Initialize the operation router.

        Args:
            engine: Preview and approval engine
            configs: Per-mode autonomy configuration (presets if not provided)
        """
        self.engine = engine
        self.configs = configs or {mode: preset_for(mode) for mode in AutonomyMode}
        logger.info("OperationRouter initialized")

    def policy_for(self, mode: AutonomyMode) -> AutonomyPolicy:
        return AutonomyPolicy(self.configs.get(mode) or preset_for(mode))

    async def route(self, request: ProposeRequest) -> list[ToolResponse]:
        """
        Route a batch of proposed operations.

        Returns:
            One ToolResponse per operation, in proposal order
        """
        active_sheet = request.active_sheet or settings.default_active_sheet
        policy = self.policy_for(request.mode)
        logger.info(
            f"Routing {len(request.operations)} operations for {request.workbook_id} "
            f"in {request.mode.value} mode"
        )

        responses = []
        for operation in request.operations:
            responses.append(
                await self._route_one(request, operation, policy, active_sheet)
            )

        if request.flush and any(r.status == ToolStatus.QUEUED_FOR_PREVIEW for r in responses):
            await self.engine.flush(request.workbook_id)
        return responses

    async def _route_one(
        self,
        request: ProposeRequest,
        operation: AISuggestedOperation,
        policy: AutonomyPolicy,
        active_sheet: str,
    ) -> ToolResponse:
        before = None
        if policy.mode == AutonomyMode.AGENT_YOLO and operation.tool in ("write_range", "write_cell"):
            before = await self._current_state(request.workbook_id, operation, active_sheet)
        decision = policy.evaluate(operation, active_sheet, before)

        response = ToolResponse(
            request_id=operation.request_id,
            tool=operation.tool,
            status=ToolStatus.APPROVED,
            message=decision.reason,
        )

        if decision.kind == DecisionKind.REJECT:
            response.status = ToolStatus.REJECTED
            response.error = decision.reason
            logger.info(f"Rejected {operation.tool}: {decision.reason}")
            return response

        if decision.kind == DecisionKind.PREVIEW:
            self.engine.enqueue_for_preview(request.workbook_id, operation, active_sheet)
            response.status = ToolStatus.QUEUED_FOR_PREVIEW
            return response

        if decision.kind == DecisionKind.QUEUE:
            options = QueueActionRequest.from_input(operation.input or {})
            action = self.engine.queue_action(
                request.workbook_id,
                operation,
                active_sheet,
                session_id=request.session_id,
                dependencies=options.dependencies,
                batch_id=options.batch_id,
                priority=options.priority,
            )
            response.status = ToolStatus.QUEUED
            response.action_id = action.id
            return response

        if decision.kind == DecisionKind.AUTO_APPROVE and not self.engine.can_execute(
            request.workbook_id, operation.tool
        ):
            # Reads the engine cannot serve are approved for the caller to run
            return response

        try:
            response.result = await self.engine.execute_now(
                request.workbook_id, operation, active_sheet
            )
        except ApplyExecutionError as e:
            response.error = str(e)
            response.message = "Approved but execution failed"
        return response

    async def _current_state(
        self, workbook_id: str, operation: AISuggestedOperation, active_sheet: str
    ):
        try:
            return await self.engine.read_target(workbook_id, operation, active_sheet)
        except ParseError:
            return None
        except Exception as e:
            logger.warning(f"Could not read current state for {operation.tool}: {e}")
            return None


__all__ = ["OperationRouter"]
