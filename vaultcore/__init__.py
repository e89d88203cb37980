"""
vaultcore - Field-Level Encryption and Key Rotation Core.

Protects sensitive personal data at rest (identity numbers, phone numbers,
message bodies, uploaded files) and manages the lifecycle of the master key,
including rotation without data loss or downtime.
"""

__version__ = "1.0.0"
