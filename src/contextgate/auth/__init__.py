# Delegated authorization core: clients, grants, codes, tokens.
# Created: 2026-10-12
