"""
Runs the end-of-session assessment with a time budget.

Fusion runs on a worker thread of its own. If it raises, or does not finish within
FUSION_TIMEOUT_SEC, the caller gets the conservative fallback BLOCK decision
instead of an exception, so every assessment ends with a verdict. A running
fusion cannot be interrupted: a hung worker is abandoned and keeps only its own
thread, so later evaluations still get a fresh worker.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional

import config
from utils.camera_signals import CameraSignals
from utils.cognitive_metrics import TestMetrics
from utils.component_risk import UserBaseline
from utils.decision_engine import (
    AssessmentDecision,
    OrderContext,
    evaluate_assessment,
    fallback_decision,
)
from utils.policy import Policy, get_policy

logger = logging.getLogger(__name__)


def evaluate_with_fallback(
    order_context: Optional[OrderContext],
    camera_signals: CameraSignals,
    tests: TestMetrics,
    policy: Optional[Policy] = None,
    baseline: Optional[UserBaseline] = None,
    timeout_sec: Optional[float] = None,
    evaluator: Callable[..., AssessmentDecision] = evaluate_assessment,
) -> AssessmentDecision:
    """
    Evaluate the assessment, substituting the fallback decision on timeout or failure.

    Args:
        evaluator: The fusion function (replaceable in tests).
        timeout_sec: Budget in seconds; defaults to config.FUSION_TIMEOUT_SEC.
    """
    policy = policy or get_policy()
    timeout = float(timeout_sec if timeout_sec is not None else config.FUSION_TIMEOUT_SEC)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fusion")
    future = executor.submit(evaluator, order_context, camera_signals, tests, policy, baseline)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning("Assessment fusion timed out after %ss; returning fallback block", timeout)
    except Exception as e:
        logger.warning("Assessment fusion failed: %s", e)
    finally:
        executor.shutdown(wait=False)
    return fallback_decision(policy, order_context)
