# =============================================================================
# FP&A Analytics Agent
# =============================================================================
# A multi-tenant analytics service over ARR and sales-pipeline CSV exports,
# with a tool-calling LLM agent that answers questions by invoking the same
# analytics the REST endpoints serve.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (agent, revenue, sales, data,
#   │                    admin) plus auth deps and audit middleware
#   ├── agents/       → LangGraph tool-agent loop, tab supervisors, tools,
#   │                    AG-UI event streaming
#   ├── db/           → Async database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → CSV data store, ARR and sales analytics, LLM
#                        providers, API key auth, rate limiting
# =============================================================================
