# =============================================================================
# Agents Package — LangGraph Tool Agents
# =============================================================================
#   - state.py: ToolAgentState schema and its merge rules
#   - tool_agent.py: bounded ReAct loop (agent ⇄ tools) as a StateGraph
#   - streaming.py: AG-UI events and the state-snapshot dedupe emitter
#   - supervisor.py: routes a question to one tab sub-agent and streams it
#   - arr.py / sales.py: tab prompts, date context, supervisor builders
#   - tools/: analytics tools the sub-agents can call
#   - configs.py: the agents exposed to clients
#   - service.py: picks the LLM, runs agents, always terminates streams
# =============================================================================
