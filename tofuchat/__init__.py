# tofuchat
"""
Password-derived secp256k1 identities, challenge-response login and
signed, encrypted messaging with trust-on-first-use contact keys.
"""

__version__ = "0.1.0"
