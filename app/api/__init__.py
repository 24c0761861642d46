# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - agent.py: agent configs, blocking chat and NDJSON streaming chat
#   - revenue.py: ARR analytics endpoints
#   - sales.py: sales pipeline / forecast / quota endpoints
#   - data.py: CSV data summary and reload
#   - admin.py: tenant and API key management
#   - deps.py: API key auth, scopes and tenant resolution
#   - audit.py: request audit logging middleware
# =============================================================================
