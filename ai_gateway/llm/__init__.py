"""
LLM Gateway Layer — provider adapters, fallback and streaming.

Provides a unified interface for calling Claude, Gemini, DeepSeek and
Kimi with automatic fallback to a deterministic Mock backend.

Modules:
- types: requests, results, stream frames, provider enum
- providers: adapter interface, backends and factory
- credentials: configuration store and bounded-time credential lookup
- timeouts: per-operation deadlines
- usage: rate windows and cost accounting
- health: per-provider health bookkeeping
- streaming: chunk reconstructor and SSE framing
- orchestrator: fallback state machine
- gateway: AIGateway facade
"""
