"""Legal agent - prepares the contract package for an accepted offer."""

import logging
from datetime import timedelta

from opentelemetry import trace

from property_sales.agents.base import (
    AgentContext,
    ToolLog,
    agent_output,
    assistant_message,
    broker_reply,
    discuss_reply,
)
from property_sales.capabilities.documents import INSPECTION_AREAS
from property_sales.errors import AgentExecutionError
from property_sales.routing import Directive, LegalDecision, Node, Redirect
from property_sales.state import (
    LegalDocuments,
    LegalResult,
    Offer,
    WorkflowStage,
    WorkflowState,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CLOSING_PERIOD = timedelta(days=45)
LEAD_PAINT_CUTOFF_YEAR = 1978


async def _generate_package(
    state: WorkflowState,
    offer: Offer,
    ctx: AgentContext,
    tools: ToolLog,
    revision_notes: str | None = None,
) -> LegalDocuments:
    prop = state.property
    closing_date = (ctx.now() + CLOSING_PERIOD).date()

    contract = await ctx.documents.generate_contract(prop, offer, closing_date, revision_notes)
    tools.record("generate_contract", document_id=contract.document_id)

    disclosure_types = ["full"]
    if prop.year_built is not None and prop.year_built < LEAD_PAINT_CUTOFF_YEAR:
        disclosure_types.insert(0, "lead_paint")
    disclosures = []
    for disclosure_type in disclosure_types:
        doc = await ctx.documents.generate_disclosure(prop, disclosure_type)
        tools.record("generate_disclosure", type=disclosure_type, document_id=doc.document_id)
        disclosures.append(doc.document_url)

    inspection = await ctx.documents.generate_inspection_checklist(prop, list(INSPECTION_AREAS))
    tools.record("generate_inspection_checklist", document_id=inspection.document_id)
    closing = await ctx.documents.generate_closing_checklist(prop, offer, closing_date)
    tools.record("generate_closing_checklist", document_id=closing.document_id)

    return LegalDocuments(
        contract_template=contract.document_url,
        disclosures=disclosures,
        inspection_checklist=[inspection.document_url],
        closing_checklist=[closing.document_url],
        status="review",
    )


def _summary(docs: LegalDocuments) -> str:
    return (
        f"{docs.document_count} documents prepared (contract, {len(docs.disclosures)} "
        "disclosures, inspection and closing checklists)"
    )


async def _handle_attorney_reply(
    state: WorkflowState, offer: Offer, docs: LegalDocuments, ctx: AgentContext
) -> Directive:
    interpretation = await ctx.interpreter.interpret(
        "legal",
        state.human_response or "",
        list(LegalDecision),
        f"Legal package for {state.property.title}: {_summary(docs)}. Status: {docs.status}.",
        fallback=LegalDecision.DISCUSS,
    )
    decision = LegalDecision(interpretation.decision)
    logger.info("Legal review decision for %s: %s", state.property_id, decision)

    if decision is LegalDecision.APPROVE:
        approved = docs.model_copy(update={"status": "ready"})
        return Redirect(
            {
                "legal_documents": approved,
                "stage": WorkflowStage.CLOSURE,
                "agent_outputs": agent_output(
                    Node.LEGAL,
                    LegalResult(
                        documents_generated=approved.document_count,
                        contract_url=approved.contract_template,
                        disclosures_generated=len(approved.disclosures),
                        status="ready",
                        human_approved=True,
                    ),
                    "Documents approved. Proceeding to Closure Agent.",
                    ctx,
                    last_response=interpretation.response or None,
                ),
            },
            goto=Node.CLOSURE,
        )

    if decision is LegalDecision.REVISE:
        modifications = await ctx.interpreter.extract_modifications(
            state.human_response or "", docs.model_dump(mode="json")
        )
        tools = ToolLog()
        revised = await _generate_package(
            state, offer, ctx, tools, revision_notes=modifications.summary
        )
        return Redirect(
            {
                "legal_documents": revised,
                "stage": WorkflowStage.LEGAL,
                "agent_outputs": agent_output(
                    Node.LEGAL,
                    LegalResult(
                        documents_generated=revised.document_count,
                        contract_url=revised.contract_template,
                        disclosures_generated=len(revised.disclosures),
                        status="review",
                        revision_notes=modifications.summary,
                    ),
                    f"Documents revised: {modifications.summary}. "
                    "Please review the updated package.",
                    ctx,
                    tools=tools,
                ),
            },
            goto=Node.HUMAN,
        )

    reply = discuss_reply(interpretation)
    return Redirect(
        {
            "stage": WorkflowStage.LEGAL,
            "messages": [*state.messages, assistant_message(reply, Node.LEGAL, ctx)],
            "agent_outputs": agent_output(
                Node.LEGAL,
                LegalResult(
                    documents_generated=docs.document_count,
                    contract_url=docs.contract_template,
                    disclosures_generated=len(docs.disclosures),
                    status=docs.status,
                ),
                f"Responded to attorney: {reply[:80]}",
                ctx,
                last_response=reply,
            ),
        },
        goto=Node.HUMAN,
    )


async def legal_agent(state: WorkflowState, ctx: AgentContext) -> Directive:
    with tracer.start_as_current_span("agent.legal") as span:
        span.set_attribute("property.id", state.property_id)
        offer = state.current_offer
        if offer is None or offer.status != "accepted":
            raise AgentExecutionError(
                "Legal documents require an accepted offer", node=Node.LEGAL.value
            )

        docs = state.legal_documents
        if broker_reply(state) and docs is not None and docs.status == "review":
            return await _handle_attorney_reply(state, offer, docs, ctx)

        tools = ToolLog()
        docs = await _generate_package(state, offer, ctx, tools)
        span.set_attribute("legal.documents", docs.document_count)
        logger.info("Legal package for %s: %s", state.property_id, _summary(docs))

        return Redirect(
            {
                "legal_documents": docs,
                "stage": WorkflowStage.LEGAL,
                "agent_outputs": agent_output(
                    Node.LEGAL,
                    LegalResult(
                        documents_generated=docs.document_count,
                        contract_url=docs.contract_template,
                        disclosures_generated=len(docs.disclosures),
                        status="review",
                    ),
                    f"ATTORNEY REVIEW REQUIRED: {_summary(docs)}. Approve, request revisions, "
                    "or ask questions.",
                    ctx,
                    tools=tools,
                ),
            },
            goto=Node.HUMAN,
        )
