"""Property sale stage agents."""

from property_sales.agents.closure import closure_agent
from property_sales.agents.input_validation import input_validation_agent
from property_sales.agents.lead_management import lead_management_agent
from property_sales.agents.legal import legal_agent
from property_sales.agents.marketing import marketing_agent
from property_sales.agents.negotiation import negotiation_agent


__all__ = [
    "closure_agent",
    "input_validation_agent",
    "lead_management_agent",
    "legal_agent",
    "marketing_agent",
    "negotiation_agent",
]
