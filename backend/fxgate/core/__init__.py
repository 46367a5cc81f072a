"""Shared building blocks: errors, envelopes, validation, rate limiting, HTTP."""
