# =============================================================================
# Agent Tools Package
# =============================================================================
#   - base.py: AgentTool definition, invocation and list truncation
#   - revenue.py: ARR tools grouped by dashboard tab
#   - sales.py: sales tools grouped by dashboard tab
# =============================================================================

from app.agents.tools.base import AgentTool, tools_by_name, truncated_list
from app.agents.tools.revenue import create_arr_tools
from app.agents.tools.sales import create_sales_tools

__all__ = [
    "AgentTool",
    "create_arr_tools",
    "create_sales_tools",
    "tools_by_name",
    "truncated_list",
]
