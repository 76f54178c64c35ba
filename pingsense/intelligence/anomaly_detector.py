import logging
import os
import pickle

import joblib
import numpy as np
from sklearn.ensemble import IsolationForest

logger = logging.getLogger(__name__)


class LatencyAnomalyDetector:

    MIN_BASELINE = 50

    def __init__(self, model_path='models/latency_model.pkl', load=True):
        self.model = None
        self.model_path = model_path
        self.baseline_features = []
        self.is_trained = False

        # thresholds for the rule based alerts
        self.loss_threshold = 50.0       # percent
        self.latency_threshold = 500.0   # ms average round trip

        if load:
            self.load_model()

    def extract_features(self, session):
        """
        Numerical features of one ping session, taken from a stored session
        row or from PingResults.to_dict()

        - Average round trip time (ms)
        - Round trip standard deviation (ms)
        - Maximum round trip time (ms)
        - Packet loss (percent)
        """
        features = [
            session.get('avg_ms', 0) or 0,
            session.get('stddev_ms', 0) or 0,
            session.get('max_ms', 0) or 0,
            session.get('packet_loss_percent', 0) or 0,
        ]
        return self.normalize_features(features)

    def collect_baseline(self, session):
        # sessions assumed healthy, used as training data
        self.baseline_features.append(self.extract_features(session))

    def train_model(self, contamination=0.05):
        # fit an isolation forest on the sessions seen so far
        if len(self.baseline_features) < self.MIN_BASELINE:
            return False, f"Not enough data to train the model ({len(self.baseline_features)}/{self.MIN_BASELINE} sessions)."

        X = np.array(self.baseline_features)

        self.model = IsolationForest(
            contamination=contamination,
            random_state=42,
            n_estimators=100,
            max_samples='auto',
            bootstrap=True
        )
        self.model.fit(X)

        self.is_trained = True
        self.save_model()

        return True, f"Model trained on {len(self.baseline_features)} sessions"

    def predict_anomaly(self, session):

        if not self.is_trained:
            return None

        X = np.array([self.extract_features(session)])

        # -1 for outliers, 1 for inliers
        prediction = self.model.predict(X)[0]

        # more negative means further from the baseline
        score = self.model.score_samples(X)[0]

        # score_samples lies in -1..0
        confidence = max(0.0, min(1.0, -score))

        return {
            'is_anomaly': bool(prediction == -1),
            'anomaly_score': float(score),
            'confidence': confidence
        }

    def detect_loss(self, session):
        loss = session.get('packet_loss_percent', 0) or 0
        target = session.get('target')

        if loss >= 100:
            return {
                'type': 'TOTAL_LOSS',
                'severity': 'CRITICAL',
                'target': target,
                'packet_loss_percent': loss,
                'description': f"{target} did not answer any probe ({session.get('error')})"
            }
        if loss >= self.loss_threshold:
            return {
                'type': 'HIGH_LOSS',
                'severity': 'HIGH',
                'target': target,
                'packet_loss_percent': loss,
                'description': f"{target} lost {loss:.0f}% of the probes"
            }
        return None

    def detect_latency(self, session):
        replies = session.get('number_of_replies', 0) or 0
        avg = session.get('avg_ms', 0) or 0
        target = session.get('target')

        # without replies avg is just the timeout
        if replies and avg > self.latency_threshold:
            return {
                'type': 'HIGH_LATENCY',
                'severity': 'MEDIUM',
                'target': target,
                'avg_ms': avg,
                'description': f"{target} average round trip {avg:.1f} ms above {self.latency_threshold:.0f} ms"
            }
        return None

    # analyze a session and return alerts
    def analyze(self, session):
        alerts = []

        loss = self.detect_loss(session)
        if loss:
            alerts.append(loss)
        latency = self.detect_latency(session)
        if latency:
            alerts.append(latency)

        if self.is_trained:
            anomaly_result = self.predict_anomaly(session)
            if anomaly_result and anomaly_result['is_anomaly']:
                alerts.append({
                    'type': 'ML_ANOMALY',
                    'severity': 'MEDIUM',
                    'target': session.get('target'),
                    'anomaly_score': anomaly_result['anomaly_score'],
                    'confidence': anomaly_result['confidence'],
                    'description': f"ML MODEL detected unusual latency pattern (confidence: {anomaly_result['confidence']:.2%}) for {session.get('target')}"
                })

        return alerts

    def save_model(self):
        directory = os.path.dirname(self.model_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        joblib.dump({
            'model': self.model,
            'is_trained': self.is_trained,
            'baseline_sessions': len(self.baseline_features)
        }, self.model_path)

    def load_model(self):
        """Restore a model saved by train_model, if there is one."""
        if not os.path.exists(self.model_path):
            return False
        try:
            data = joblib.load(self.model_path)
        except (OSError, EOFError, KeyError, ValueError, pickle.UnpicklingError) as exc:
            logger.warning("Could not load model %s: %s", self.model_path, exc)
            return False
        self.model = data['model']
        self.is_trained = data['is_trained']
        return True

    def normalize_features(self, features):
        """
            Scale every feature into 0-1, capping round trip times at 10 s

            Index, feature and range:
            0: avg rtt (0-10000 ms)
            1: stddev (0-10000 ms)
            2: max rtt (0-10000 ms)
            3: packet loss (0-100 %)
        """
        normalized = list(features)

        normalized[0] = min(features[0] / 10000.0, 1.0)
        normalized[1] = min(features[1] / 10000.0, 1.0)
        normalized[2] = min(features[2] / 10000.0, 1.0)
        normalized[3] = features[3] / 100.0

        return normalized

    def get_statistics(self):
        return {
            'is_trained': self.is_trained,
            'baseline_samples': len(self.baseline_features),
        }
