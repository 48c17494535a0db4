"""Cloud function invocation and automation flow execution."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from apaas_client.api.base import ApiContext, ApiGroup, segment
from apaas_client.models import FlowOperator

if TYPE_CHECKING:
    from apaas_client.models import ApiResponse

logger = logging.getLogger(__name__)


class FunctionApi(ApiGroup):
    async def invoke(self, name: str, params: Any = None) -> ApiResponse:
        """Invoke a cloud function by API name."""
        logger.info("Invoking cloud function", extra={"function": name})
        return await self._call(
            "function.invoke",
            "POST",
            f"/api/cloudfunction/v1/namespaces/{self._ns()}/invoke/{segment(name, 'name')}",
            json={"params": params},
        )


def _operator_body(operator: FlowOperator | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(operator, FlowOperator):
        return operator.to_body()
    return FlowOperator.model_validate(dict(operator)).to_body()


class AutomationV1Api(ApiGroup):
    async def execute(
        self,
        flow_api_name: str,
        operator: FlowOperator | Mapping[str, Any],
        params: Any = None,
    ) -> ApiResponse:
        """Run a flow as operator (``{"_id": ..., "email": ...}``)."""
        logger.info("Executing flow", extra={"flow": flow_api_name, "version": 1})
        return await self._call(
            "automation.v1.execute",
            "POST",
            f"/api/flow/v1/namespaces/{self._ns()}/flows/{segment(flow_api_name, 'flow_api_name')}/execute",
            json={"operator": _operator_body(operator), "params": params},
        )


class AutomationV2Api(ApiGroup):
    async def execute(
        self,
        flow_api_name: str,
        operator: FlowOperator | Mapping[str, Any],
        params: Any = None,
        is_resubmit: bool | None = None,
        pre_instance_id: str | None = None,
    ) -> ApiResponse:
        """
        Run a flow as operator.

        Args:
            is_resubmit: Resubmit a previous instance (sent only when given).
            pre_instance_id: Instance being resubmitted (sent only when non-empty).
        """
        body: dict[str, Any] = {"operator": _operator_body(operator), "params": params}
        if is_resubmit is not None:
            body["is_resubmit"] = is_resubmit
        if pre_instance_id:
            body["pre_instance_id"] = pre_instance_id

        logger.info("Executing flow", extra={"flow": flow_api_name, "version": 2})
        return await self._call(
            "automation.v2.execute",
            "POST",
            f"/v2/namespaces/{self._ns()}/flows/{segment(flow_api_name, 'flow_api_name')}/execute",
            json=body,
        )


class AutomationApi:
    """Automation flows, by API version."""

    def __init__(self, ctx: ApiContext) -> None:
        self.v1 = AutomationV1Api(ctx)
        self.v2 = AutomationV2Api(ctx)
