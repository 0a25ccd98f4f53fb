"""
FlashPay - account-to-account money transfers with session token management
"""

__version__ = "1.0.0"
