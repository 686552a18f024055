"""
Brain engine: strategy selection and reply drafting.

Runtime pieces (generation provider, retrieval client, circuit breaker,
result cache) are injected into BrainEngine so tests and deployments can
swap them independently.
"""
