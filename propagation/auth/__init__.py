"""
Auth Module - Ownership Signatures and Peer Credentials
"""

from .credentials import Credentials, CredentialPrompt, PromptCredentials, StaticCredentials
from .signer import AuthSigner, KeyFileSigner, verify_signature

__all__ = [
    'Credentials',
    'CredentialPrompt',
    'PromptCredentials',
    'StaticCredentials',
    'AuthSigner',
    'KeyFileSigner',
    'verify_signature',
]
