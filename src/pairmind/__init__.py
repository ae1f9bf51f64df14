"""pairmind: context-aware AI pair-programming agents.

Subpackages
-----------
core/        — context snapshots, caching, git access, audit trail, error log
agents/      — agent contract, privacy guard, response parsing, orchestrator
llm/         — completion-service client (streaming, retry, rate limiting)

Top-level modules
-----------------
config      — workspace paths and persisted settings
session     — editor-facing coordinator
cli         — command-line entry point
"""

__version__ = "0.1.0"
