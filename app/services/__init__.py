# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - csv_parser.py: quote-aware CSV parsing and field normalisers
#   - data_store.py: typed in-memory store of the analytics CSVs, per tenant
#   - revenue_compute.py: ARR overview, movement, customer and product rollups
#   - sales_compute.py: pipeline, forecast, quota and Monte Carlo analytics
#   - llm.py: Multi-provider LLM abstraction with tool calling
#   - auth.py: API key generation, hashing, scopes
#   - rate_limiter.py: Redis sliding-window rate limiting
# =============================================================================
