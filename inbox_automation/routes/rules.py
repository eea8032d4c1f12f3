"""
Rules API Routes
HTTP endpoints for rule management, manual rule runs and condition dry runs.
"""

from fastapi import APIRouter, Depends, Query, status

from inbox_automation.auth.verify import get_owner_id
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.models.api.rule_request import (
    ConditionTestRequest,
    CreateRuleRequest,
    RunRuleRequest,
)
from inbox_automation.models.api.rule_response import (
    ConditionTestResponse,
    RuleExecutionResponse,
    RuleResponse,
    RulesListResponse,
)
from inbox_automation.routes.dependencies import get_components, get_mailbox
from inbox_automation.services.mailbox_service import MailboxService
from inbox_automation.wiring import AutomationComponents

logger = get_logger(__name__)

router = APIRouter(prefix="/rules", tags=["rules"])


@router.get("", response_model=RulesListResponse)
async def list_rules(
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    rules = await components.rules_engine.list_rules(owner_id)
    return RulesListResponse(
        rules=[RuleResponse.from_domain(rule) for rule in rules], total_count=len(rules)
    )


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: CreateRuleRequest,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    """Validate and store a rule."""
    rule = await components.rules_engine.create_rule(
        owner_id,
        request.name,
        [condition.to_domain() for condition in request.conditions],
        [action.to_domain() for action in request.actions],
        is_active=request.is_active,
        schedule=request.schedule.to_domain() if request.schedule else None,
    )
    return RuleResponse.from_domain(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    await components.rules_engine.delete_rule(rule_id, owner_id)


@router.post("/{rule_id}/run", response_model=RuleExecutionResponse)
async def run_rule(
    rule_id: str,
    request: RunRuleRequest | None = None,
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
    mailbox: MailboxService = Depends(get_mailbox),
):
    """Run an active rule against the caller's most recent inbox messages."""
    record = await components.rules_engine.run_rule_by_id(
        rule_id, owner_id, mailbox, max_emails=(request or RunRuleRequest()).max_emails
    )
    return RuleExecutionResponse.from_domain(record)


@router.get("/{rule_id}/executions", response_model=list[RuleExecutionResponse])
async def list_rule_executions(
    rule_id: str,
    limit: int = Query(default=50, ge=1, le=100, description="Records to return"),
    owner_id: str = Depends(get_owner_id),
    components: AutomationComponents = Depends(get_components),
):
    records = await components.rules_engine.get_rule_executions(rule_id, owner_id, limit=limit)
    return [RuleExecutionResponse.from_domain(record) for record in records]


@router.post("/test", response_model=ConditionTestResponse)
async def test_conditions(
    request: ConditionTestRequest,
    components: AutomationComponents = Depends(get_components),
    mailbox: MailboxService = Depends(get_mailbox),
):
    """Dry run: count and preview matches without performing any action."""
    result = await components.rules_engine.test_conditions(
        [condition.to_domain() for condition in request.conditions],
        mailbox,
        max_emails=request.max_emails,
    )
    return ConditionTestResponse.from_domain(result)
