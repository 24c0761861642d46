# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response and analytics filter schemas for the API.
# These are SEPARATE from the database models (app/db/models.py).
#
#   - filters.py: analytics filters shared by REST query strings and agent
#                 tool arguments (camelCase aliases)
#   - requests.py: chat and admin request bodies
#   - responses.py: health, agent, data and admin response bodies
# =============================================================================
