"""Terminal client: the presentation layer over SessionCoordinator."""

import argparse
import getpass # For typing passphrases
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path

from groupchat import config
from groupchat.common.errors import (
    BannedAccess, EncryptionFailure, InvalidKeyMaterial, RateLimitExceeded, ValidationError,
)
from groupchat.common.protocol import RSAKeyPair
from groupchat.crypto import rsa_oaep
from groupchat.session import SessionCoordinator, credentials_from_saved
from groupchat.storage.store import open_store

print_lock = threading.Lock()


def fmt_time(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def render(lines):
    """Redraws the whole conversation."""
    with print_lock:
        print(f"\n--- {len(lines)} message(s) ---")
        for line in lines:
            who = "You" if line.is_self else line.author
            print(f"[{fmt_time(line.ts)}] {who}: {line.text}")
        print("[You]: ", end="", flush=True)


def show_ban(ban):
    print("\n[!] ACCESS DENIED")
    print(f"[!] Reason: {ban.reason}")
    print(f"[!] Banned until {fmt_time(ban.expires_at)}")


def read_text(path):
    try:
        return Path(path).read_text()
    except OSError as e:
        print(f"Error: cannot read {path}: {e}")
        sys.exit(1)


def build_credentials(args, saved):
    """Picks credentials from flags first, then from the remembered cache."""
    scheme = args.scheme
    if scheme == "rsa":
        if args.public_key and args.private_key:
            return RSAKeyPair(
                public_key=read_text(args.public_key),
                private_key=read_text(args.private_key),
            )
        if saved and saved.scheme == "rsa":
            print("Using remembered key pair.")
            return credentials_from_saved(saved)
        print("Error: --public-key and --private-key are required (or use --genkeys DIR).")
        sys.exit(1)

    if saved and saved.scheme == "passphrase" and not args.ask:
        print("Using remembered passphrase.")
        return credentials_from_saved(saved)
    return getpass.getpass("Group passphrase: ")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="End-to-end encrypted group chat")
    parser.add_argument("--username", help="Display name (max 20 characters)")
    parser.add_argument("--scheme", choices=["rsa", "passphrase"], default=config.SCHEME)
    parser.add_argument("--public-key", help="Path to the group public key (PEM)")
    parser.add_argument("--private-key", help="Path to the group private key (PEM)")
    parser.add_argument("--genkeys", metavar="DIR", help="Generate a new group key pair into DIR and use it")
    parser.add_argument("--ask", action="store_true", help="Ignore a remembered passphrase")
    parser.add_argument("--remember", action="store_true",
                        help="Save credentials in the local store (plaintext, weakens secrecy)")
    parser.add_argument("--forget", action="store_true", help="Delete remembered credentials and exit")
    parser.add_argument("--store", choices=["file", "mysql", "memory"], default=config.STORE_BACKEND)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = open_store(args.store)
    coordinator = SessionCoordinator(store)

    if args.forget:
        coordinator.forget_credentials()
        print("Remembered credentials deleted.")
        return 0

    # --- 0. Ban check ---
    ban = coordinator.check_access()
    if ban is not None:
        show_ban(ban)
        return 1

    if args.genkeys:
        public_pem, private_pem = rsa_oaep.generate_key_pair(config.RSA_KEY_SIZE)
        public_path, private_path = rsa_oaep.write_key_pair(args.genkeys, public_pem, private_pem)
        print(f"Generated key pair: {public_path}, {private_path}")
        print("Share BOTH files with everyone who should read this group.")
        args.scheme = "rsa"
        args.public_key, args.private_key = str(public_path), str(private_path)

    # --- 1. Credentials ---
    saved = coordinator.load_remembered()
    credentials = build_credentials(args, saved)
    username = args.username or (saved.username if saved else None) or input("Username: ").strip()

    # --- 2. Connect ---
    try:
        session = coordinator.connect(credentials, username, on_update=render)
    except ValidationError as e:
        for field, message in e.errors.items():
            print(f"Error: {field}: {message}")
        coordinator.close()
        return 1
    except InvalidKeyMaterial as e:
        print(f"Error: {e}")
        coordinator.close()
        return 1
    except BannedAccess as e:
        show_ban(e.ban)
        coordinator.close()
        return 1

    if args.remember:
        coordinator.remember_credentials(credentials, session.username)
        print("Credentials remembered. Anyone with access to this store can read the group.")

    print(f"Connected as {session.username}. Messages are end-to-end encrypted.")
    print("Type /exit to quit, /reload to refresh.")
    render(coordinator.messages(session))

    # --- 3. Chat loop ---
    pending = None
    try:
        while True:
            msg_text = input().strip()

            if msg_text == "/exit":
                break
            if msg_text == "/reload":
                render(coordinator.reload(session))
                continue
            if not msg_text and pending:
                msg_text = pending
            if not msg_text:
                continue

            try:
                coordinator.send(session, msg_text)
                pending = None
                render(coordinator.messages(session))
            except ValidationError as e:
                with print_lock:
                    for field, message in e.errors.items():
                        print(f"[!] {field}: {message}")
            except EncryptionFailure as e:
                pending = msg_text
                with print_lock:
                    print(f"[!] Failed to encrypt message ({e}). Press Enter to retry.")
            except RateLimitExceeded as e:
                show_ban(e.ban)
                return 1
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        # --- 4. Teardown ---
        coordinator.disconnect(session)
        coordinator.close()
        print("\nDisconnected. Goodbye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
