"""Generation Gateway Layer.

Async infrastructure for issuing calls to rate-limited generation providers:
  - Credential Pool (rotation, per-key cooldown, usage accounting)
  - Response Cache (memory LRU + persistent SQL tier, hashed keys)
  - Concurrency Throttle (in-flight bound, adaptive pacing)
  - Invocation Orchestrator (failure classification, rotation, backoff)
  - Segmenter / Reassembler (chunked fan-out, ordered join)
"""
