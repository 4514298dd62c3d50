"""Create a group RSA key pair (PEM) using cryptography."""

import argparse

from groupchat import config
from groupchat.crypto import engine, rsa_oaep
from groupchat.common.protocol import RSAKeyPair

def main():
    parser = argparse.ArgumentParser(description="Create a group key pair")
    parser.add_argument("--out", default="keys", help="Output directory")
    parser.add_argument("--bits", type=int, default=config.RSA_KEY_SIZE, help="RSA key size")
    args = parser.parse_args()

    print(f"Generating {args.bits}-bit group key pair...")
    public_pem, private_pem = rsa_oaep.generate_key_pair(args.bits)

    # Same probe every participant runs on connect
    pair = RSAKeyPair(public_key=public_pem, private_key=private_pem)
    if not engine.validate(pair):
        raise SystemExit("Generated key pair failed validation")

    public_path, private_path = rsa_oaep.write_key_pair(args.out, public_pem, private_pem)

    print(f"Public key saved: {public_path}")
    print(f"Private key saved: {private_path}")
    print(f"Group identity: {engine.group_identity(pair)}")
    print("Share both files with every member of the group.")

if __name__ == "__main__":
    main()
