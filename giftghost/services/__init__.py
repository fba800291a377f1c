"""Governance and traceability services.

- identity: caller identity from request context
- rate_limit: two-tier daily limiter
- trace: AI session lifecycle, feedback and trace analytics
- tracking/: batched event tracker, sanitization and ingestion
- llm: external completion service
- generation: the rate-limited, traced generation flow
"""
