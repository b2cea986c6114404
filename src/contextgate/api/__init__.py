# contextgate HTTP API layer
# Created: 2026-10-13
#
# Versioned REST endpoints for CLI clients and the consent flow, mounted at /api/v1/.
