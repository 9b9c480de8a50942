"""Access policy evaluation."""

from .evaluator import AccessPolicyEvaluator, AccessResult

__all__ = ['AccessPolicyEvaluator', 'AccessResult']
