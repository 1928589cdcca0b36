"""
Services package for TradePause Gate.

Stateful helpers that own threads:
- Cooldown enforcer: one ticking countdown per session
- Assessment evaluator: runs fusion on a worker with a time budget and a fallback decision
"""
