"""
Policy Loader

The gating policy decides how strict the trade gate is:

  riskThreshold     composite risk at or above which trading is blocked (0-100)
  cooldownDuration  minimum cooldown in seconds for any cooldown-bearing verdict
  enabledModes      which evidence sources count: facialExpression, cognitiveTest,
                    behavioralBiometrics (a missing key means enabled)

Loaded from POLICY_URL (remote policy store), else POLICY_PATH (local JSON file),
else built-in defaults from config. The in-memory policy can be read and
partially updated at runtime (GET/PUT /config/policy).

JSON format:
  {"riskThreshold": 60, "cooldownDuration": 30,
   "enabledModes": {"facialExpression": true, "cognitiveTest": true, "behavioralBiometrics": true}}
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import requests

import config

logger = logging.getLogger(__name__)

MODE_KEYS = ("facialExpression", "cognitiveTest", "behavioralBiometrics")


@dataclass(frozen=True)
class Policy:
    risk_threshold: float = 60.0
    cooldown_duration: int = 30  # seconds
    enabled_modes: Dict[str, bool] = field(default_factory=dict)

    def is_enabled(self, mode: str) -> bool:
        return bool(self.enabled_modes.get(mode, True))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskThreshold": self.risk_threshold,
            "cooldownDuration": self.cooldown_duration,
            "enabledModes": {k: self.is_enabled(k) for k in MODE_KEYS},
        }

    def merged(self, data: Optional[Dict[str, Any]]) -> "Policy":
        """
        Return a copy with the fields present in data (camelCase) applied.

        Raises:
            ValueError: On a wrongly typed or out-of-range field.
        """
        if not data:
            return self
        if not isinstance(data, dict):
            raise ValueError("policy must be an object")
        changes: Dict[str, Any] = {}
        if data.get("riskThreshold") is not None:
            t = data["riskThreshold"]
            if isinstance(t, bool) or not isinstance(t, (int, float)) or not math.isfinite(t) or not 0 <= t <= 100:
                raise ValueError("riskThreshold must be a number between 0 and 100")
            changes["risk_threshold"] = float(t)
        if data.get("cooldownDuration") is not None:
            c = data["cooldownDuration"]
            if isinstance(c, bool) or not isinstance(c, (int, float)) or not math.isfinite(c) or c < 0:
                raise ValueError("cooldownDuration must be a non-negative number of seconds")
            changes["cooldown_duration"] = int(round(c))
        modes = data.get("enabledModes")
        if modes is not None:
            if not isinstance(modes, dict):
                raise ValueError("enabledModes must be an object")
            merged_modes = dict(self.enabled_modes)
            for k, v in modes.items():
                if not isinstance(v, bool):
                    raise ValueError(f"enabledModes.{k} must be true or false")
                merged_modes[k] = v
            changes["enabled_modes"] = merged_modes
        return replace(self, **changes)


def default_policy() -> Policy:
    return Policy(
        risk_threshold=float(config.RISK_THRESHOLD),
        cooldown_duration=int(config.COOLDOWN_BASE_SECONDS),
    )


# In-memory policy (updated by load_policy, set_policy)
_current: Policy = Policy()


def get_policy() -> Policy:
    """Return the current policy (immutable)."""
    return _current


def set_policy(data: Optional[Dict[str, Any]]) -> Policy:
    """Partial update of the in-memory policy. Raises ValueError on bad input."""
    global _current
    _current = _current.merged(data)
    return _current


def load_policy() -> Policy:
    """
    Load from POLICY_URL, else POLICY_PATH, else defaults.
    Updates the in-memory policy and returns it.
    """
    global _current
    base = default_policy()

    # 1) URL
    url = getattr(config, "POLICY_URL", None)
    if url:
        try:
            r = requests.get(url, timeout=5)
            if r.ok:
                _current = base.merged(r.json())
                return _current
            logger.warning("Policy URL returned HTTP %s; trying file", r.status_code)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Policy URL load failed: %s", e)

    # 2) File
    path = getattr(config, "POLICY_PATH", "")
    if path and os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                _current = base.merged(json.load(f))
            return _current
        except (OSError, ValueError) as e:
            logger.warning("Policy file %s load failed: %s", path, e)

    # 3) Defaults
    _current = base
    return _current
