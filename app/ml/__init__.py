"""Prediction modules: features, synthesizer, estimators, meta-learner, learning loop."""
