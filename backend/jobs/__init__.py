"""
Background jobs for the Intelligence Core.

Jobs:
- fetch_signals: Fetch external attention signals, detect cross-layer correlations, report AMI
- retrain_models: Retrain pattern models and report drift / retirement health
"""
