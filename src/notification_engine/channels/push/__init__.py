from .fcm import FcmPushAdapter, is_retryable_fcm_error

__all__ = ["FcmPushAdapter", "is_retryable_fcm_error"]
