# Rate limiting, audit logging and user sessions.
# Created: 2026-10-12
