"""
Personalized customer support agent

A tool-calling agent whose system prompt is personalized from the
customer's profile, with three support tools: TroubleshootIssue,
CreateTicket and EscalateToHuman.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from integration.llm_adapter import LLMAdapter
from integration.prompts import PromptLibrary
from integration.tool_registry import ToolRegistry, ToolSchema
from patterns.common import default_executor
from patterns.tool_agent import build_tool_agent_graph
from workflow.executor import RunResult, WorkflowExecutor
from workflow.graph import WorkflowGraph

logger = logging.getLogger(__name__)

SUPPORT_PROMPTS = {
    "support.personalization": (
        "You are assisting {customer_name}, a {customer_tier} tier customer.\n"
        "Recent purchases: {recent_purchases}\n"
        "Support history: {support_history}\n"
        "Address the customer by name and take their history into account."
    ),
    "support.base": (
        "You are a technical support specialist for an electronics company. "
        "Try troubleshooting first. Create a ticket when an issue needs follow-up, "
        "and escalate to a human when the customer asks for one or the issue cannot be "
        "resolved remotely."
    ),
}

_RESULT_SCHEMA = {
    "type": "object",
    "properties": {"status": {"type": "string"}, "message": {"type": "string"}},
    "required": ["status"],
}


@dataclass
class CustomerInfo:
    name: str = ""
    tier: str = ""
    recent_purchases: List[str] = field(default_factory=list)
    support_history: str = ""


def troubleshoot_issue(issue_description: str) -> dict:
    return {
        "status": "success",
        "report": (
            f"Troubleshooting steps initiated for: {issue_description}. "
            f"Please check power, connectivity, and firmware version."
        ),
    }


def create_ticket(issue_type: str, details: str) -> dict:
    ticket_id = f"TICKET-{int(time.time() * 1000)}"
    logger.info(f"Created {ticket_id} ({issue_type})")
    return {
        "status": "success",
        "ticket_id": ticket_id,
        "message": f"Issue logged successfully. Ticket ID: {ticket_id}. A specialist will review your details.",
    }


def escalate_to_human(issue_type: str, reason: str) -> dict:
    return {
        "status": "success",
        "message": (
            f"Escalation for {issue_type} requested. Reason: {reason}. "
            f"Connecting you to a human specialist now."
        ),
    }


def support_tools() -> ToolRegistry:
    tools = ToolRegistry()
    tools.register_handler(
        "TroubleshootIssue",
        "Run basic troubleshooting for a product issue the customer describes.",
        troubleshoot_issue,
        schema=ToolSchema(
            parameters={"issue_description": {"type": "string"}},
            required_params=["issue_description"],
            returns=_RESULT_SCHEMA,
        ),
    )
    tools.register_handler(
        "CreateTicket",
        "Log an issue that needs follow-up by a specialist.",
        create_ticket,
        schema=ToolSchema(
            parameters={"issue_type": {"type": "string"}, "details": {"type": "string"}},
            required_params=["issue_type", "details"],
            returns=_RESULT_SCHEMA,
        ),
    )
    tools.register_handler(
        "EscalateToHuman",
        "Hand the conversation to a human specialist.",
        escalate_to_human,
        schema=ToolSchema(
            parameters={"issue_type": {"type": "string"}, "reason": {"type": "string"}},
            required_params=["issue_type", "reason"],
            returns=_RESULT_SCHEMA,
        ),
    )
    return tools


def personalization_note(customer: CustomerInfo, prompts: PromptLibrary) -> str:
    return prompts.render(
        "support.personalization",
        customer_name=customer.name or "valued customer",
        customer_tier=customer.tier or "standard",
        recent_purchases=", ".join(customer.recent_purchases) or "None",
        support_history=customer.support_history or "None available.",
    )


def build_support_graph(
    llm: LLMAdapter,
    customer: CustomerInfo,
    tools: Optional[ToolRegistry] = None,
    prompts: Optional[PromptLibrary] = None,
    **kwargs
) -> WorkflowGraph:
    prompts = (prompts or PromptLibrary()).with_defaults(SUPPORT_PROMPTS)
    return build_tool_agent_graph(
        llm,
        tools or support_tools(),
        name="support_agent",
        system_messages=[personalization_note(customer, prompts), prompts.render("support.base")],
        prompts=prompts,
        **kwargs
    )


async def run_support_agent(
    llm: LLMAdapter,
    customer: CustomerInfo,
    message: str,
    executor: Optional[WorkflowExecutor] = None,
    **kwargs
) -> RunResult:
    graph = build_support_graph(llm, customer, **kwargs)
    return await default_executor(executor).run(graph, {"query": message})
