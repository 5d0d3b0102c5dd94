"""
Configuration for payment gateways, messaging providers and rate limits.
"""

from typing import Dict, Any

# Payment gateway configuration
PAYMENT_CONFIG = {
    "paystack": {
        "base_url": "https://api.paystack.co",
    },
    "stripe": {
        "base_url": "https://api.stripe.com",
    },
    "paypal": {
        "live_url": "https://api-m.paypal.com",
        "sandbox_url": "https://api-m.sandbox.paypal.com",
        "brand_name": "Invoice Payment",
    },
    "timeout_seconds": 10,   # Per request timeout for gateway calls
    "max_retries": 2,        # Retries after the first attempt
    "retry_delay_seconds": 1.0,
    "circuit_failure_threshold": 5,
    "circuit_recovery_seconds": 30,
}

# WhatsApp provider configuration
WHATSAPP_CONFIG = {
    "twilio_base_url": "https://api.twilio.com/2010-04-01",
    "twilio_default_number": "+14155238886",  # Twilio sandbox number
    "meta_base_url": "https://graph.facebook.com/v18.0",
    "timeout_seconds": 10,
    "default_due_days": 30,
    "local_country_code": "+44",  # Used for numbers starting with 0
}

# Email provider configuration
EMAIL_CONFIG = {
    "resend_url": "https://api.resend.com/emails",
    "from_address": "InvoiceGen <invoices@example.com>",
    "timeout_seconds": 10,
}

# Fixed window rate limits
RATE_LIMIT_CONFIG = {
    "enabled": True,
    "limits": {
        "general": {"window_seconds": 15 * 60, "max_requests": 100},
        "auth": {"window_seconds": 15 * 60, "max_requests": 5},
        "payment": {"window_seconds": 60 * 60, "max_requests": 20},
        "email": {"window_seconds": 60 * 60, "max_requests": 50},
        "health": {"window_seconds": 60, "max_requests": 10},
    },
    "cleanup_interval_seconds": 5 * 60,
}


def get_provider_config() -> Dict[str, Any]:
    """
    Get the provider configuration.

    Returns:
        Dict[str, Any]: Provider configuration keyed by config section
    """
    return {
        "payments": PAYMENT_CONFIG,
        "whatsapp": WHATSAPP_CONFIG,
        "email": EMAIL_CONFIG,
        "rate_limit": RATE_LIMIT_CONFIG,
    }
