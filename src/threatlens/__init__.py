"""
ThreatLens - automated SOC alert triage

Core components:
- RiskScorer: deterministic risk, confidence and false-positive scoring
- NarrativeGenerator: LLM narration with rule-based fallback
- CorrelationEngine: groups related alerts into incidents
- IncidentLifecycle: analyst-driven incident state machine
"""

__version__ = "0.1.0"
