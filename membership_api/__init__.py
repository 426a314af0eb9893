"""Membership Billing API.

FastAPI-based backend for the portfolio site's premium membership, providing:
- Client-triggered Razorpay payment verification
- Razorpay webhook reconciliation
- Membership status reads
- Health and configuration status

Security: Firebase Auth tokens required for all client endpoints. The webhook
is authenticated by its HMAC signature instead.
"""
