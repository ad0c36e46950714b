from .limiter import DEFAULT_POLICIES, FixedWindowRateLimiter, RateLimitPolicy

__all__ = ["DEFAULT_POLICIES", "FixedWindowRateLimiter", "RateLimitPolicy"]
