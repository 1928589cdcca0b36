"""
Utility module tests.

Tests landmark geometry, cognitive test metrics, the policy loader and frame decoding.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import tempfile
import unittest
from unittest.mock import patch, MagicMock

import numpy as np


class TestLandmarkGeometry(unittest.TestCase):
    """Test raw signal extraction from synthetic landmarks."""

    def test_neutral_face_reads_low(self):
        """A relaxed face should produce near-zero tension signals."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face
        sample = extract_signals(neutral_face(), None, 1.0)
        self.assertTrue(sample.face_detected)
        for key in ("brow_tension", "forehead_tension", "jaw_clench", "lip_press",
                    "nose_flare", "mouth_asymmetry", "eye_strain", "cheek_tension",
                    "upper_lip_tension", "chin_tension"):
            self.assertLess(sample.get(key), 5.0, key)
        self.assertLess(sample.get("micro_expression_tension"), 10.0)
        self.assertAlmostEqual(sample.eye_aspect_ratio, 0.30, places=3)

    def test_first_frame_motion_defaults(self):
        """Without a previous frame, head movement is 5, eye darting 10, tremor and gaze 0."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face
        sample = extract_signals(neutral_face(), None, 1.0)
        self.assertEqual(sample.get("head_movement"), 5.0)
        self.assertEqual(sample.get("eye_darting"), 10.0)
        self.assertEqual(sample.get("micro_tremor"), 0.0)
        self.assertEqual(sample.get("gaze_instability"), 0.0)
        self.assertIsNotNone(sample.anchors)
        self.assertEqual(sample.anchors.timestamp, 1.0)

    def test_tense_face_reads_high(self):
        """Pulled brows, clenched jaw and pressed lips should register."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import tense_face
        sample = extract_signals(tense_face(), None, 1.0)
        self.assertGreater(sample.get("brow_tension"), 50.0)
        self.assertGreater(sample.get("jaw_clench"), 90.0)
        self.assertGreater(sample.get("lip_press"), 90.0)
        self.assertGreater(sample.get("nose_flare"), 90.0)
        self.assertGreater(sample.get("upper_lip_tension"), 20.0)
        self.assertGreater(sample.get("eye_strain"), 20.0)
        self.assertGreater(sample.get("micro_expression_tension"), 50.0)

    def test_closed_eyes_clamp_ear(self):
        """Closed eyes should clamp EAR to 0.12 and register eye strain."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face, closed_eyes
        sample = extract_signals(closed_eyes(neutral_face()), None, 1.0)
        self.assertAlmostEqual(sample.eye_aspect_ratio, 0.12)
        self.assertAlmostEqual(sample.get("eye_strain"), 40.0, places=3)

    def test_head_motion_from_previous_anchor(self):
        """A 0.01 nose shift between frames should show as head movement, gaze drift and tremor."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face, shifted
        first = extract_signals(neutral_face(), None, 1.0)
        second = extract_signals(shifted(neutral_face(), dx=0.01), first.anchors, 1.033)
        self.assertAlmostEqual(second.get("head_movement"), 18.0, places=3)
        self.assertAlmostEqual(second.get("gaze_instability"), 10.0, places=3)
        self.assertEqual(second.get("micro_tremor"), 100.0)
        # Irises moved with the eyes, so no darting beyond the floor
        self.assertEqual(second.get("eye_darting"), 5.0)

    def test_still_face_has_no_motion(self):
        """Identical consecutive frames should read zero motion."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face
        first = extract_signals(neutral_face(), None, 1.0)
        second = extract_signals(neutral_face(), first.anchors, 1.033)
        self.assertEqual(second.get("head_movement"), 0.0)
        self.assertEqual(second.get("micro_tremor"), 0.0)

    def test_anchor_at_time_zero_is_used(self):
        """A previous frame stamped 0.0 still anchors eye darting on the next frame."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face
        first = extract_signals(neutral_face(), None, 0.0)
        second = extract_signals(neutral_face(), first.anchors, 1 / 30.0)
        self.assertEqual(second.get("eye_darting"), 5.0)

    def test_no_face_is_empty_sample(self):
        """None landmarks should produce an all-zero sample without anchors."""
        from utils.landmark_geometry import extract_signals, SIGNAL_KEYS
        sample = extract_signals(None, None, 1.0)
        self.assertFalse(sample.face_detected)
        self.assertIsNone(sample.anchors)
        self.assertEqual(set(sample.signals), set(SIGNAL_KEYS))
        self.assertTrue(all(v == 0.0 for v in sample.signals.values()))

    def test_non_finite_nose_is_no_face(self):
        """A NaN nose tip cannot anchor the face; the frame counts as no face."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face
        lm = neutral_face()
        lm[1] = np.nan
        self.assertFalse(extract_signals(lm, None, 1.0).face_detected)

    def test_missing_iris_uses_darting_default(self):
        """468-point landmarks (no iris) should still extract, with default eye darting."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import neutral_face, without_iris
        first = extract_signals(without_iris(neutral_face()), None, 1.0)
        second = extract_signals(without_iris(neutral_face()), first.anchors, 1.033)
        self.assertTrue(second.face_detected)
        self.assertEqual(second.get("eye_darting"), 10.0)

    def test_two_dimensional_input(self):
        """(N, 2) landmarks should give the same tension signals as (N, 3) with z=0."""
        from utils.landmark_geometry import extract_signals
        from tests.fixtures.synthetic_landmarks import tense_face
        lm = tense_face()
        a = extract_signals(lm, None, 1.0)
        b = extract_signals(lm[:, :2], None, 1.0)
        self.assertAlmostEqual(a.get("brow_tension"), b.get("brow_tension"))
        self.assertAlmostEqual(a.get("jaw_clench"), b.get("jaw_clench"))

    def test_random_landmarks_stay_in_range(self):
        """Every signal should be finite and within 0-100 for arbitrary input."""
        from utils.landmark_geometry import extract_signals
        rng = np.random.RandomState(7)
        previous = None
        for i in range(20):
            sample = extract_signals(rng.rand(478, 3), previous, 1.0 + i / 30.0)
            for key, value in sample.signals.items():
                self.assertTrue(np.isfinite(value), key)
                self.assertGreaterEqual(value, 0.0, key)
                self.assertLessEqual(value, 100.0, key)
            previous = sample.anchors

    def test_eye_aspect_ratio_missing_points(self):
        """EAR falls back to the neutral 0.26 when eye points are missing."""
        from utils.landmark_geometry import eye_aspect_ratio, LEFT_EYE, NEUTRAL_EAR
        self.assertEqual(eye_aspect_ratio(np.zeros((10, 3)), LEFT_EYE), NEUTRAL_EAR)


class TestCognitiveMetrics(unittest.TestCase):
    """Test trial aggregation for the three cognitive tests."""

    def test_impulse_control_counts(self):
        """Go/no-go accuracy, impulsive errors and premature responses should be counted."""
        from utils.cognitive_metrics import GoNoGoTrial, compute_impulse_control_metrics
        trials = [GoNoGoTrial("go", True, True, 300.0 + i * 10) for i in range(7)]
        trials.append(GoNoGoTrial("go", False, False, None))
        trials += [GoNoGoTrial("no-go", False, True) for _ in range(3)]
        trials.append(GoNoGoTrial("no-go", True, False, 180.0, premature=True))
        m = compute_impulse_control_metrics(trials)
        self.assertEqual(m.total_trials, 12)
        self.assertAlmostEqual(m.go_accuracy, 7 / 8)
        self.assertAlmostEqual(m.no_go_accuracy, 0.75)
        self.assertEqual(m.impulsive_errors, 1)
        self.assertEqual(m.premature_responses, 1)
        self.assertAlmostEqual(m.avg_reaction_time_ms, 330.0)
        self.assertGreater(m.response_consistency, 0.9)

    def test_aggregators_are_pure(self):
        """The same trials give equal metrics on every call and the input is left untouched."""
        from utils.cognitive_metrics import (
            GoNoGoTrial, FocusStimulus, ReactionTrial, compute_impulse_control_metrics,
            compute_focus_stability_metrics, compute_reaction_consistency_metrics,
        )
        go = [GoNoGoTrial("go", True, True, 300.0 + i * 7) for i in range(6)]
        go.append(GoNoGoTrial("no-go", True, False, 150.0))
        focus = [FocusStimulus(i % 3 == 0, i % 2 == 0, i % 4 != 1, 380.0 + i) for i in range(12)]
        reaction = [ReactionTrial(250.0 + i * 11, anticipatory=(i == 2)) for i in range(9)]
        snapshot = (list(go), list(focus), list(reaction))
        for compute, trials in ((compute_impulse_control_metrics, go),
                                (compute_focus_stability_metrics, focus),
                                (compute_reaction_consistency_metrics, reaction)):
            self.assertEqual(compute(trials), compute(trials))
            self.assertEqual(compute(trials), compute(tuple(trials)))
        self.assertEqual((go, focus, reaction), snapshot)

    def test_impulse_control_empty(self):
        """No trials should yield zeroed metrics."""
        from utils.cognitive_metrics import compute_impulse_control_metrics
        m = compute_impulse_control_metrics([])
        self.assertEqual(m.total_trials, 0)
        self.assertEqual(m.go_accuracy, 0.0)
        self.assertEqual(m.no_go_accuracy, 0.0)
        self.assertEqual(m.response_consistency, 0.0)

    def test_single_reaction_time_is_fully_consistent(self):
        """With one reaction time the std is 0 and consistency 1."""
        from utils.cognitive_metrics import GoNoGoTrial, compute_impulse_control_metrics
        m = compute_impulse_control_metrics([GoNoGoTrial("go", True, True, 420.0)])
        self.assertEqual(m.reaction_std_dev_ms, 0.0)
        self.assertEqual(m.response_consistency, 1.0)

    def test_focus_stability(self):
        """Sustained attention is 1 - (missed + false alarms) / total."""
        from utils.cognitive_metrics import FocusStimulus, compute_focus_stability_metrics
        stimuli = [FocusStimulus(True, True, True, 400.0) for _ in range(3)]
        stimuli.append(FocusStimulus(True, False, False))
        stimuli.append(FocusStimulus(False, True, False, 350.0))
        stimuli += [FocusStimulus(False, False, True) for _ in range(5)]
        m = compute_focus_stability_metrics(stimuli)
        self.assertEqual(m.total_stimuli, 10)
        self.assertEqual(m.matches_presented, 4)
        self.assertEqual(m.correct_matches, 3)
        self.assertEqual(m.missed_matches, 1)
        self.assertEqual(m.false_alarms, 1)
        self.assertAlmostEqual(m.sustained_attention, 0.8)
        self.assertAlmostEqual(m.avg_reaction_time_ms, 400.0)

    def test_reaction_consistency(self):
        """Average, best, worst, variability and stability from reaction times."""
        from utils.cognitive_metrics import ReactionTrial, compute_reaction_consistency_metrics
        trials = [ReactionTrial(200.0), ReactionTrial(300.0), ReactionTrial(None, anticipatory=True),
                  ReactionTrial(None, late=True)]
        m = compute_reaction_consistency_metrics(trials)
        self.assertEqual(m.trials, 4)
        self.assertAlmostEqual(m.average_ms, 250.0)
        self.assertEqual(m.best_ms, 200.0)
        self.assertEqual(m.worst_ms, 300.0)
        self.assertAlmostEqual(m.variability, 50.0)
        self.assertAlmostEqual(m.stability_score, 0.8)
        self.assertEqual(m.anticipations, 1)
        self.assertEqual(m.late_responses, 1)

    def test_reaction_without_times(self):
        """Trials with no reaction times give zero stability."""
        from utils.cognitive_metrics import ReactionTrial, compute_reaction_consistency_metrics
        m = compute_reaction_consistency_metrics([ReactionTrial(None, anticipatory=True)])
        self.assertEqual(m.trials, 1)
        self.assertEqual(m.stability_score, 0.0)

    def test_metrics_from_trials_json(self):
        """camelCase trial lists should parse into TestMetrics."""
        from utils.cognitive_metrics import metrics_from_trials
        tests = metrics_from_trials({
            "impulseControl": [
                {"type": "go", "responded": True, "correct": True, "reactionTimeMs": 320},
                {"type": "no-go", "responded": False, "correct": True},
            ],
            "focusStability": [{"matchesPrevious": True, "responded": True, "correct": True, "reactionTimeMs": 410}],
            "reactionConsistency": [{"reactionTimeMs": 280}, {"reactionTimeMs": 300}],
        })
        self.assertEqual(tests.impulse_control.total_trials, 2)
        self.assertEqual(tests.focus_stability.correct_matches, 1)
        self.assertEqual(tests.reaction_consistency.trials, 2)

    def test_metrics_from_trials_rejects_bad_input(self):
        """Unknown trial types and non-numeric reaction times should raise ValueError."""
        from utils.cognitive_metrics import metrics_from_trials
        with self.assertRaises(ValueError):
            metrics_from_trials({"impulseControl": [{"type": "maybe"}]})
        with self.assertRaises(ValueError):
            metrics_from_trials({"reactionConsistency": [{"reactionTimeMs": "fast"}]})
        with self.assertRaises(ValueError):
            metrics_from_trials({"focusStability": "not a list"})

    def test_empty_trials_are_unavailable(self):
        """Missing trial data should give zeroed bundles."""
        from utils.cognitive_metrics import metrics_from_trials
        tests = metrics_from_trials(None)
        self.assertEqual(tests.impulse_control.total_trials, 0)
        self.assertEqual(tests.focus_stability.total_stimuli, 0)
        self.assertEqual(tests.reaction_consistency.trials, 0)

    def test_test_metrics_dict_keys(self):
        """TestMetrics should serialize with camelCase keys and parse back."""
        from utils.cognitive_metrics import TestMetrics, ImpulseControlMetrics
        tm = TestMetrics(impulse_control=ImpulseControlMetrics(go_accuracy=0.9, total_trials=12))
        d = tm.to_dict()
        self.assertIn("goAccuracy", d["impulseControl"])
        self.assertIn("sustainedAttention", d["focusStability"])
        self.assertIn("stabilityScore", d["reactionConsistency"])
        back = TestMetrics.from_dict(d)
        self.assertEqual(back.impulse_control.total_trials, 12)
        self.assertIsInstance(back.impulse_control.total_trials, int)

    def test_test_metrics_rejects_strings(self):
        """Non-numeric metric values should raise ValueError."""
        from utils.cognitive_metrics import TestMetrics
        with self.assertRaises(ValueError):
            TestMetrics.from_dict({"impulseControl": {"goAccuracy": "high"}})


def _reset_policy():
    import config
    from utils import policy
    with patch.object(config, "POLICY_URL", ""), patch.object(config, "POLICY_PATH", ""):
        policy.load_policy()


class TestPolicy(unittest.TestCase):
    """Test gating policy merge and loading."""

    def tearDown(self):
        _reset_policy()

    def test_missing_mode_is_enabled(self):
        """Modes absent from enabledModes count as enabled."""
        from utils.policy import Policy
        p = Policy()
        self.assertTrue(p.is_enabled("facialExpression"))
        self.assertEqual(set(p.to_dict()["enabledModes"]), {"facialExpression", "cognitiveTest", "behavioralBiometrics"})

    def test_merged_partial_update(self):
        """merged should apply only the fields present."""
        from utils.policy import Policy
        p = Policy(risk_threshold=60, cooldown_duration=30).merged({
            "riskThreshold": 70,
            "enabledModes": {"cognitiveTest": False},
        })
        self.assertEqual(p.risk_threshold, 70.0)
        self.assertEqual(p.cooldown_duration, 30)
        self.assertFalse(p.is_enabled("cognitiveTest"))
        self.assertTrue(p.is_enabled("behavioralBiometrics"))

    def test_merged_rejects_invalid(self):
        """Out-of-range or wrongly typed fields should raise ValueError."""
        from utils.policy import Policy
        for bad in ({"riskThreshold": 150}, {"riskThreshold": True}, {"cooldownDuration": -1},
                    {"enabledModes": {"facialExpression": "yes"}}, {"enabledModes": []}):
            with self.assertRaises(ValueError, msg=str(bad)):
                Policy().merged(bad)

    def test_load_from_file(self):
        """With no URL, the policy file should be used."""
        import config
        from utils import policy
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as f:
            json.dump({"riskThreshold": 55, "cooldownDuration": 45}, f)
            path = f.name
        try:
            with patch.object(config, "POLICY_URL", ""), patch.object(config, "POLICY_PATH", path):
                p = policy.load_policy()
            self.assertEqual(p.risk_threshold, 55.0)
            self.assertEqual(p.cooldown_duration, 45)
            self.assertIs(policy.get_policy(), p)
        finally:
            os.remove(path)

    def test_load_from_url(self):
        """A reachable policy URL takes precedence."""
        import config
        from utils import policy
        resp = MagicMock(ok=True)
        resp.json.return_value = {"riskThreshold": 65}
        with patch.object(config, "POLICY_URL", "http://policy.example/policy.json"), \
                patch("utils.policy.requests.get", return_value=resp) as get:
            p = policy.load_policy()
        get.assert_called_once()
        self.assertEqual(p.risk_threshold, 65.0)

    def test_url_failure_falls_back_to_defaults(self):
        """A failing URL with no file should log a warning and use config defaults."""
        import config
        import requests
        from utils import policy
        with patch.object(config, "POLICY_URL", "http://policy.example/policy.json"), \
                patch.object(config, "POLICY_PATH", ""), \
                patch("utils.policy.requests.get", side_effect=requests.ConnectionError("down")):
            with self.assertLogs("utils.policy", level="WARNING"):
                p = policy.load_policy()
        self.assertEqual(p.risk_threshold, float(config.RISK_THRESHOLD))

    def test_set_policy(self):
        """set_policy should update the in-memory policy."""
        from utils import policy
        policy.set_policy({"cooldownDuration": 90})
        self.assertEqual(policy.get_policy().cooldown_duration, 90)


class TestFrameDecoder(unittest.TestCase):
    """Test uploaded frame decoding."""

    def test_decode_and_downscale(self):
        """A wide JPEG should decode to BGR and be downscaled to max_width."""
        import cv2
        from utils.frame_decoder import decode_frame
        ok, buf = cv2.imencode(".jpg", np.zeros((720, 1280, 3), dtype=np.uint8))
        self.assertTrue(ok)
        frame = decode_frame(buf.tobytes(), max_width=640)
        self.assertEqual(frame.shape, (360, 640, 3))

    def test_invalid_bytes(self):
        """Garbage or empty input should return None."""
        from utils.frame_decoder import decode_frame
        self.assertIsNone(decode_frame(b""))
        self.assertIsNone(decode_frame(b"not an image"))


class TestFaceDetectors(unittest.TestCase):
    """Test the detector interface and the MediaPipe backend."""

    def test_detect_primary_picks_most_confident(self):
        """detect_primary returns the landmarks of the most confident face, None when empty."""
        from utils.face_detection_interface import FaceDetectorInterface, FaceDetectionResult

        class FakeDetector(FaceDetectorInterface):
            def __init__(self, faces):
                self.faces = faces

            def detect_faces(self, image):
                return self.faces

            def get_name(self):
                return "fake"

        weak = FaceDetectionResult(landmarks=np.zeros((478, 3)), confidence=0.4)
        strong = FaceDetectionResult(landmarks=np.ones((478, 3)), confidence=0.9)
        self.assertIs(FakeDetector([weak, strong]).detect_primary(None), strong.landmarks)
        self.assertIsNone(FakeDetector([]).detect_primary(None))

    def test_mediapipe_blank_frame(self):
        """A blank frame has no face."""
        try:
            from utils.mediapipe_detector import MediaPipeFaceDetector
            detector = MediaPipeFaceDetector()
        except (ImportError, AttributeError, RuntimeError) as e:
            self.skipTest(f"MediaPipe FaceMesh unavailable: {e}")
        try:
            self.assertIsNone(detector.detect_primary(np.zeros((240, 320, 3), dtype=np.uint8)))
            self.assertEqual(detector.get_name(), "mediapipe")
        finally:
            detector.close()


if __name__ == "__main__":
    unittest.main()
