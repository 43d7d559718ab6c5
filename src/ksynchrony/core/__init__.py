"""Core primitives: node facade, estimator, nonce registry, reconciler."""
