"""
Flask routes for TradePause Gate.

Handles health, assessment session start/stop, frame and landmark submission,
the latest camera snapshot, end-of-session evaluation, cooldown status/abandon,
and the gating policy.
"""

from typing import Optional

import numpy as np
from flask import Blueprint, jsonify, request

import config
from services.cooldown_enforcer import get_enforcer
from utils import policy as policy_store
from utils.camera_signals import CameraSignals
from utils.cognitive_metrics import TestMetrics, metrics_from_trials
from utils.component_risk import UserBaseline
from utils.decision_engine import OrderContext
from utils.frame_decoder import decode_frame


# Create a blueprint for better organization
api = Blueprint('api', __name__)

DEFAULT_SESSION_ID = "default"

# Global assessment session (one per process).
# AssessmentSession is imported lazily in start_assessment to defer loading the detector stack.
assessment_session = None  # type: Optional["AssessmentSession"]


def register_routes(app) -> None:
    """Attach the API blueprint to the app."""
    app.register_blueprint(api)


def _session_id_from_request() -> str:
    data = request.get_json(silent=True) if request.is_json else None
    sid = None
    if isinstance(data, dict):
        sid = data.get("sessionId")
    sid = sid or request.args.get("sessionId")
    if not sid and assessment_session is not None:
        sid = assessment_session.session_id
    return str(sid or DEFAULT_SESSION_ID)


def _active_session_or_404():
    if assessment_session is None or not assessment_session.is_active:
        return None, (jsonify({"error": "No active assessment session. Call POST /assessment/start first."}), 404)
    return assessment_session, None


@api.route("/health", methods=["GET"])
def health():
    """
    Liveness check.

    Returns:
        JSON: {"status": "ok", "sessionActive": bool}
    """
    return jsonify({
        "status": "ok",
        "sessionActive": bool(assessment_session is not None and assessment_session.is_active),
    })


@api.route("/config/all", methods=["GET"])
def get_all_config():
    """
    Get all non-secret configuration plus the current gating policy.

    Returns:
        JSON: Configuration dictionary
    """
    out = config.build_config_response()
    out["currentPolicy"] = policy_store.get_policy().to_dict()
    return jsonify(out)


@api.route("/config/policy", methods=["GET", "PUT"])
def policy_route():
    """
    GET: Current gating policy. Reloads from POLICY_URL / POLICY_PATH when ?reload=true.
    PUT: Partial update. Body: {"riskThreshold": 60, "cooldownDuration": 30,
         "enabledModes": {"facialExpression": bool, "cognitiveTest": bool, "behavioralBiometrics": bool}}
    """
    if request.method == "GET":
        if request.args.get("reload", "").lower() == "true":
            policy_store.load_policy()
        return jsonify(policy_store.get_policy().to_dict())
    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400
    try:
        return jsonify(policy_store.set_policy(data).to_dict())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@api.route("/assessment/start", methods=["POST"])
def start_assessment():
    """
    Start a new assessment session. Any previous session is stopped and its state discarded.

    Request Body (optional):
        {"sessionId": "optional id; default 'default'"}

    Returns:
        JSON: {"success": true, "sessionId": "...", "message": "..."}
    """
    global assessment_session
    # Lazy import: defers loading the session (and, on first frame, the detector stack)
    from assessment_session import AssessmentSession

    data = request.get_json(silent=True) if request.is_json else None
    session_id = str((data or {}).get("sessionId") or DEFAULT_SESSION_ID)
    try:
        if assessment_session is not None:
            assessment_session.stop()
        assessment_session = AssessmentSession(session_id)
        assessment_session.start()
        return jsonify({
            "success": True,
            "sessionId": session_id,
            "message": "Assessment session started",
        })
    except Exception as e:
        return jsonify({"error": "Failed to start assessment session", "details": str(e)}), 500


@api.route("/assessment/stop", methods=["POST"])
def stop_assessment():
    """
    Stop the assessment session and discard its camera state (nothing is finalized).

    Returns:
        JSON: {"success": true, "message": "..."}
    """
    global assessment_session
    try:
        if assessment_session is not None:
            assessment_session.stop()
            assessment_session = None
        return jsonify({"success": True, "message": "Assessment session stopped"})
    except Exception as e:
        return jsonify({"error": "Failed to stop assessment session", "details": str(e)}), 500


@api.route("/assessment/frame", methods=["POST"])
def submit_frame():
    """
    Analyze one camera frame.
    Expects a raw JPEG/PNG body or multipart/form-data with an image file ("frame" or "image").

    Returns:
        JSON: CameraSignals snapshot
    """
    from assessment_session import FrameInFlightError, SessionNotActiveError

    session, error = _active_session_or_404()
    if error:
        return error
    data = request.get_data()
    if not data and request.files:
        f = request.files.get("frame") or request.files.get("image") or next(iter(request.files.values()), None)
        if f:
            data = f.read()
    if not data:
        return jsonify({"error": "No image data"}), 400
    frame = decode_frame(data)
    if frame is None:
        return jsonify({"error": "Invalid or unsupported image"}), 400
    try:
        return jsonify(session.submit_frame(frame).to_dict())
    except FrameInFlightError as e:
        return jsonify({"error": str(e)}), 409
    except SessionNotActiveError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        return jsonify({"error": "Failed to process frame", "details": str(e)}), 500


@api.route("/assessment/landmarks", methods=["POST"])
def submit_landmarks():
    """
    Analyze one frame of precomputed landmarks.

    Request Body:
        {
            "landmarks": [[x, y, z], ...] normalized points, or null for "no face",
            "timestamp": optional frame time in seconds
        }

    Returns:
        JSON: CameraSignals snapshot
    """
    from assessment_session import FrameInFlightError, SessionNotActiveError

    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "landmarks" not in data:
        return jsonify({"error": "Missing 'landmarks'"}), 400
    session, error = _active_session_or_404()
    if error:
        return error

    landmarks = None
    if data["landmarks"] is not None:
        try:
            landmarks = np.asarray(data["landmarks"], dtype=np.float64)
        except (TypeError, ValueError):
            return jsonify({"error": "landmarks must be a list of [x, y] or [x, y, z] numbers"}), 400
        if landmarks.ndim != 2 or landmarks.shape[1] not in (2, 3):
            return jsonify({"error": "landmarks must have shape (N, 2) or (N, 3)"}), 400
    timestamp = data.get("timestamp")
    if timestamp is not None and (isinstance(timestamp, bool) or not isinstance(timestamp, (int, float))
                                  or not np.isfinite(timestamp)):
        return jsonify({"error": "timestamp must be a number of seconds"}), 400

    try:
        return jsonify(session.process(landmarks, timestamp).to_dict())
    except FrameInFlightError as e:
        return jsonify({"error": str(e)}), 409
    except SessionNotActiveError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        return jsonify({"error": "Failed to process landmarks", "details": str(e)}), 500


@api.route("/assessment/camera", methods=["GET"])
def get_camera_snapshot():
    """
    Latest camera snapshot for the active session.

    Returns:
        JSON: CameraSignals snapshot
    """
    session, error = _active_session_or_404()
    if error:
        return error
    return jsonify(session.camera_snapshot().to_dict())


@api.route("/assessment/evaluate", methods=["POST"])
def evaluate_assessment_route():
    """
    Fuse camera and cognitive test evidence into a trade decision and start its cooldown.

    The policy always comes from the policy store (PUT /config/policy). While any
    cooldown is running, evaluation is refused with 409 whatever the sessionId.

    Request Body:
        {
            "orderContext": {"instrument": "...", "size": 1, ...},
            "cameraSignals": optional CameraSignals (defaults to the session's latest snapshot),
            "testMetrics": optional {"impulseControl": {...}, "focusStability": {...}, "reactionConsistency": {...}},
            "trials": optional raw trial lists with the same keys (used when testMetrics is absent),
            "baseline": optional {"accuracy", "reactionTimeMs", "reactionTimeStdDev"},
            "sessionId": optional
        }

    Returns:
        JSON: {allowed, decision, emotionalRiskScore, confidence, reasoning[], cooldownSeconds?,
               diagnostics{...}, orderContext}
    """
    global assessment_session
    from assessment_session import AssessmentSession, CooldownActiveError

    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        order_context = OrderContext.from_dict(data.get("orderContext"))
        camera = CameraSignals.from_dict(data["cameraSignals"]) if data.get("cameraSignals") else None
        if data.get("testMetrics"):
            tests = TestMetrics.from_dict(data["testMetrics"])
        else:
            tests = metrics_from_trials(data.get("trials"))
        baseline = UserBaseline.from_dict(data.get("baseline"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    running = get_enforcer().active_states()
    if running:
        return jsonify({"error": "Cooldown active; evaluation refused until it ends",
                        "cooldown": running[0].to_dict()}), 409

    session_id = _session_id_from_request()
    session = assessment_session
    if session is None or session.session_id != session_id:
        # Evaluation without a camera session still gets an enforced cooldown
        session = AssessmentSession(session_id)
    try:
        decision = session.evaluate(order_context, tests, camera, policy_store.get_policy(), baseline)
        return jsonify(decision.to_dict())
    except CooldownActiveError as e:
        return jsonify({"error": str(e), "cooldown": session.cooldown_state().to_dict()}), 409
    except Exception as e:
        return jsonify({"error": "Failed to evaluate assessment", "details": str(e)}), 500


@api.route("/cooldown/status", methods=["GET"])
def cooldown_status():
    """
    Cooldown state for a session (?sessionId=..., default: current session).

    Returns:
        JSON: {"sessionId", "active", "remainingSeconds", "totalSeconds"}
    """
    return jsonify(get_enforcer().get_state(_session_id_from_request()).to_dict())


@api.route("/cooldown/abandon", methods=["POST"])
def abandon_cooldown():
    """
    Abandon the session's cooldown. The pending trade stays unplaced.

    Request Body (optional):
        {"sessionId": "..."}

    Returns:
        JSON: {"success": true, "abandoned": bool, "cooldown": CooldownState}
    """
    session_id = _session_id_from_request()
    enforcer = get_enforcer()
    abandoned = enforcer.abandon(session_id)
    return jsonify({
        "success": True,
        "abandoned": abandoned,
        "cooldown": enforcer.get_state(session_id).to_dict(),
    })
