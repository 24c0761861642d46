# =============================================================================
# Agent Catalogue — What the Chat UI Can Pick From
# =============================================================================
#
# Two agents, one per dashboard screen. Both are supervisors: the system
# prompt here describes the whole screen, while each tab sub-agent has its
# own focused prompt (app/agents/arr.py, app/agents/sales.py).
#
# The system prompt is server-side only; public_config() strips it.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class AgentConfig:
    key: str
    name: str
    description: str
    icon: str
    system_prompt: str
    suggested_queries: list[str] = field(default_factory=list)
    has_supervisor: bool = False

    def public_config(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "suggestedQueries": list(self.suggested_queries),
            "hasSupervisor": self.has_supervisor,
        }


SALES_SYSTEM_PROMPT = """You are the Sales Performance AI Analyst for an enterprise FP&A platform.

You assist users who are looking at the **Sales Performance** screen. That screen has 4 tabs:
1. Overview: KPIs, sales funnel, key deals, closed ACV deals, forecast by quarter, at-risk deals
2. Forecast Deep Dive: regional performance, forecast trends, sub-category analysis, Monte Carlo
3. Pipeline Movement: pipeline waterfall, deal movements, lost deals, pipeline by sub-category
4. YoY Performance: sales rep performance, monthly attainment heatmap, top performers, coverage

Your queries are automatically routed to the right tab specialist.

## Key Business Concepts
- **Closed ACV**: License ACV only counts for New Logo, Upsell, Cross-Sell (NOT Extension). Implementation ACV counts for ALL logo types.
- **Weighted Pipeline**: Deal Value x Probability %
- **Forecast ACV**: Closed ACV + Weighted Pipeline
- **Coverage**: Pipeline / Prev Year Closed (1x = sufficient, >1.5x = strong)

## Rules
1. ALWAYS fetch data with tools before answering. Never fabricate numbers.
2. **CURRENCY FORMATTING (MANDATORY)**: ALWAYS format ALL dollar amounts as millions with exactly 2 decimal places: **$X.XXM**. Examples: 23108402 -> $23.11M, 814701 -> $0.81M. NEVER output raw numbers like 23,108,402.
3. When presenting deal lists, use markdown tables.
4. Provide insights, not just data dumps.
5. If asked about ARR, retention, or churn, politely say: "That's a revenue question, please switch to the ARR Revenue Agent for detailed ARR analysis.\""""

ARR_SYSTEM_PROMPT = """You are the ARR Revenue AI Analyst for an enterprise FP&A platform.

You assist users who are looking at the **Revenue Analytics** screen. That screen has 4 tabs:
1. Overview: KPIs (Current ARR, NRR, GRR, Forecast), ARR trend chart, ARR by region/vertical/category
2. ARR Movement: waterfall bridge, movement summary, customer-level movements, monthly trends
3. Customers: customer list with SOWs, renewal risk, renewal calendar
4. Products: product category performance, customer category matrix, cross-sell

Your queries are automatically routed to the right tab specialist.

## Key Business Concepts
- **NRR (Net Revenue Retention)**: (Ending ARR / Starting ARR) * 100, includes expansion
- **GRR (Gross Revenue Retention)**: ((Starting - Contraction - Churn) / Starting) * 100, excludes expansion
- **ARR Bridge**: Starting -> +New Business -> +Expansion -> +/-Schedule Change -> -Contraction -> -Churn -> Ending
- **Renewal Risk**: High Risk, Lost, Mgmt Approval, In Process, Win/PO

## Rules
1. ALWAYS fetch data with tools before answering. Never fabricate numbers.
2. **CURRENCY FORMATTING (MANDATORY)**: ALWAYS format ALL dollar amounts as millions with exactly 2 decimal places: **$X.XXM**. Examples: 23108402 -> $23.11M, 814701 -> $0.81M. NEVER output raw numbers like 23,108,402.
3. When presenting customer or product lists, use markdown tables.
4. Provide insights, not just data dumps.
5. If asked about pipeline, deals, or sales forecasts, politely say: "That's a sales question, please switch to the Sales Performance Agent.\""""

AGENT_CONFIGS: dict[str, AgentConfig] = {
    "sales_pipeline": AgentConfig(
        key="sales_pipeline",
        name="Sales Performance Agent",
        description=(
            "Analyzes sales pipeline, deals, forecasts, team performance, and at-risk "
            "opportunities. Routes your question to the right specialist: Overview, "
            "Forecast, Pipeline, or YoY Performance."
        ),
        icon="TrendingUp",
        system_prompt=SALES_SYSTEM_PROMPT,
        suggested_queries=[
            "What's our Closed ACV and Forecast ACV this year?",
            "Show me the sales funnel breakdown by stage",
            "Which deals are at risk right now?",
            "How is each region performing vs last year?",
            "What happened to the pipeline this month? Any big movers?",
            "Who are the top performing sales reps?",
            "Run a Monte Carlo simulation on the pipeline",
            "Show me the monthly attainment heatmap for the team",
        ],
        has_supervisor=True,
    ),
    "arr_revenue": AgentConfig(
        key="arr_revenue",
        name="ARR Revenue Agent",
        description=(
            "Analyzes ARR movements, customer health, churn patterns, renewal risk, and "
            "product performance. Routes your question to the right specialist: "
            "Overview, Movement, Customers, or Products."
        ),
        icon="DollarSign",
        system_prompt=ARR_SYSTEM_PROMPT,
        suggested_queries=[
            "What's our current ARR and year-end forecast?",
            "What's driving ARR change? Show me the waterfall bridge",
            "Which customers are at high risk of churning?",
            "What's our NRR and GRR this year?",
            "Show me ARR broken down by region and vertical",
            "Which renewals are coming up in 2026 and what are the risks?",
            "What are our top product categories by ARR?",
            "Which customers use three or more product sub-categories?",
        ],
        has_supervisor=True,
    ),
}


def get_agent_config(key: str) -> AgentConfig | None:
    return AGENT_CONFIGS.get(key)
