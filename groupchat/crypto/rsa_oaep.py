"""RSA key handling and OAEP(SHA-256) key wrapping."""

import functools
from pathlib import Path
from typing import Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)

def generate_key_pair(key_size: int = 2048) -> Tuple[str, str]:
    """
    Generates a fresh RSA key pair (public exponent 65537).
    Returns (public_pem, private_pem) as text.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    return public_pem.decode('ascii'), private_pem.decode('ascii')

def write_key_pair(directory, public_pem: str, private_pem: str) -> Tuple[Path, Path]:
    """
    Writes group_public.pem and group_private.pem (mode 0600) into directory.
    Returns their paths.
    """
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    public_path = out_dir / "group_public.pem"
    private_path = out_dir / "group_private.pem"
    public_path.write_text(public_pem)
    private_path.write_text(private_pem)
    private_path.chmod(0o600)
    return public_path, private_path

# Every poll opens every entry with the same key; parse it once.
@functools.lru_cache(maxsize=16)
def load_public_key(public_pem: str) -> rsa.RSAPublicKey:
    """Loads an RSA public key from PEM text. Raises ValueError/TypeError if unusable."""
    public_key = serialization.load_pem_public_key(public_pem.strip().encode('ascii'))
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise TypeError("Key is not an RSA public key")
    return public_key

@functools.lru_cache(maxsize=16)
def load_private_key(private_pem: str) -> rsa.RSAPrivateKey:
    """Loads an unencrypted RSA private key from PEM text."""
    private_key = serialization.load_pem_private_key(
        private_pem.strip().encode('ascii'),
        password=None  # Group keys are shared unencrypted
    )
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise TypeError("Key is not an RSA private key")
    return private_key

def public_key_der(public_key: rsa.RSAPublicKey) -> bytes:
    """Canonical DER encoding, independent of PEM whitespace."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

def wrap(public_key: rsa.RSAPublicKey, data: bytes) -> bytes:
    """
    Encrypts a small payload (a content key) with RSA-OAEP(SHA-256).
    Output length equals the key size in bytes.
    """
    return public_key.encrypt(data, OAEP)

def unwrap(private_key: rsa.RSAPrivateKey, data: bytes) -> bytes:
    """Reverse of wrap(). Raises ValueError if the key does not match."""
    return private_key.decrypt(data, OAEP)

def forget_keys() -> None:
    """Drops parsed keys held by the PEM caches."""
    load_public_key.cache_clear()
    load_private_key.cache_clear()
