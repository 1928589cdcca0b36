"""
=============================================================================
CONFIGURATION FOR TRADEPAUSE GATE (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the trade gate in one place.
Other files read from here instead of hard-coding numbers. Values come from
the environment (your .env file or system variables), so you can run a
stricter gate in production than in development without changing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Gating policy     - Risk threshold and base cooldown used when no policy
                         store is configured; where to load the policy from.
  2. Camera analysis   - Face detection confidence and the high-stress alert
                         (threshold and how many frames it must persist).
  3. Assessment        - Time budget for the fusion step, cooldown tick rate.
  4. Logging           - Log level for the whole service.
  5. Server            - Host, port, and debug mode for the web server.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. RISK_THRESHOLD) override everything.
  - If an env var is not set, we use the default shown here.
  - A policy loaded from POLICY_URL or POLICY_PATH overrides the gating
    defaults at runtime (see utils/policy.py).
=============================================================================
"""

import os


# ============================================================================
# GATING POLICY (how strict the gate is)
# ============================================================================
# Composite risk (0-100) at or above which trading is blocked. Cooldown kicks
# in 15 points below this (never below 45).
RISK_THRESHOLD: float = float(os.getenv("RISK_THRESHOLD", "60"))
# Minimum cooldown in seconds for any cooldown or block decision.
COOLDOWN_BASE_SECONDS: int = int(os.getenv("COOLDOWN_BASE_SECONDS", "30"))
# Optional remote policy store (JSON). Tried first; falls back to POLICY_PATH.
POLICY_URL: str = os.getenv("POLICY_URL", "").strip()
# Optional local policy file (JSON). Used when POLICY_URL is unset or fails.
POLICY_PATH: str = os.getenv("POLICY_PATH", "policy/policy.json").strip()

# ============================================================================
# CAMERA ANALYSIS (face landmarks and the high-stress alert)
# ============================================================================
# Minimum MediaPipe detection/tracking confidence. Lower finds faces in poor
# lighting more often but accepts shakier landmark fits.
MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.3"))
# Uploaded frames wider than this are downscaled before detection (0 = never).
FRAME_MAX_WIDTH: int = int(os.getenv("FRAME_MAX_WIDTH", "640"))
# Stress score (0-100) that counts as "high" for the alert.
HIGH_STRESS_THRESHOLD: float = float(os.getenv("HIGH_STRESS_THRESHOLD", "70"))
# Consecutive high frames before the alert turns on.
HIGH_STRESS_MIN_FRAMES: int = int(os.getenv("HIGH_STRESS_MIN_FRAMES", "10"))
# Consecutive non-high frames before the alert turns off.
HIGH_STRESS_CLEAR_FRAMES: int = int(os.getenv("HIGH_STRESS_CLEAR_FRAMES", "5"))

# ============================================================================
# ASSESSMENT (fusion and cooldown timing)
# ============================================================================
# Seconds the fusion step may take before the fallback block decision is used.
FUSION_TIMEOUT_SEC: float = float(os.getenv("FUSION_TIMEOUT_SEC", "10"))
# Seconds between cooldown ticks (each tick removes one second).
COOLDOWN_TICK_SEC: float = float(os.getenv("COOLDOWN_TICK_SEC", "1.0"))

# ============================================================================
# LOGGING
# ============================================================================
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================================
# SERVER (where the app listens)
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = os.getenv("FLASK_DEBUG", "true").lower() == "true"
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")

# ============================================================================
# HELPERS
# ============================================================================

def warn_missing_config() -> None:
    """
    Print advisories for settings that look wrong. Call from app startup.
    Does not raise; the service runs on defaults.
    """
    import sys
    problems = []
    if not 0 <= RISK_THRESHOLD <= 100:
        problems.append(f"RISK_THRESHOLD={RISK_THRESHOLD} (expected 0-100)")
    if COOLDOWN_BASE_SECONDS < 0:
        problems.append(f"COOLDOWN_BASE_SECONDS={COOLDOWN_BASE_SECONDS} (expected >= 0)")
    if FUSION_TIMEOUT_SEC <= 0:
        problems.append(f"FUSION_TIMEOUT_SEC={FUSION_TIMEOUT_SEC} (expected > 0)")
    if not POLICY_URL and not os.path.isfile(POLICY_PATH):
        print("Config note: no POLICY_URL and no policy file at", POLICY_PATH, "- using built-in policy defaults", file=sys.stderr)
    if problems:
        print("Config warning: the following settings look invalid:", ", ".join(problems), file=sys.stderr)


def build_config_response() -> dict:
    """
    Build the configuration response for GET /config/all.
    Only non-secret settings are included.
    """
    return {
        "policy": {
            "riskThreshold": RISK_THRESHOLD,
            "cooldownBaseSeconds": COOLDOWN_BASE_SECONDS,
            "policyUrlConfigured": bool(POLICY_URL),
            "policyPath": POLICY_PATH,
        },
        "camera": {
            "minFaceConfidence": MIN_FACE_CONFIDENCE,
            "frameMaxWidth": FRAME_MAX_WIDTH,
            "highStressThreshold": HIGH_STRESS_THRESHOLD,
            "highStressMinFrames": HIGH_STRESS_MIN_FRAMES,
            "highStressClearFrames": HIGH_STRESS_CLEAR_FRAMES,
        },
        "assessment": {
            "fusionTimeoutSec": FUSION_TIMEOUT_SEC,
            "cooldownTickSec": COOLDOWN_TICK_SEC,
        },
    }
