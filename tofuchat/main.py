"""
tofuchat - Main Entry Point

Runs the end-to-end scenario against an in-process service:
registration, challenge-response login, a forged login attempt,
and a signed, encrypted message exchange.
"""

import argparse
from dataclasses import replace

from .client import ChatClient
from .config import ChatConfig
from .core_crypto.ciphers import get_cipher
from .core_crypto.keys import hash_message
from .core_crypto.signatures import sign
from .integration.event_logger import EventLogger
from .integration.service import ChatService
from .messaging.protocol import MessageProtocol
from .util.log import configure_logging


def print_header(title):
    print("\n" + "=" * 50)
    print(f"  {title}")
    print("=" * 50)


def forged_login(service: ChatService, victim: str, attacker: ChatClient) -> dict:
    """Attacker answers the victim's challenge with its own key."""
    client_ip = attacker.client_ip or attacker.username
    nonce = service.challenge({'username': victim}, client_ip=client_ip)['nonce']
    signature = sign(attacker.keys.private_key, hash_message(nonce))
    return service.verify({'username': victim, 'signature': signature.to_dict()},
                          client_ip=client_ip)


def run_demo(config: ChatConfig) -> EventLogger:
    audit = EventLogger()
    service = ChatService(config, audit=audit)
    protocol = MessageProtocol(get_cipher(config.cipher))

    alice = ChatClient("alice", "alice-password", service, protocol=protocol, audit=audit,
                       client_ip="10.0.0.1")
    bob = ChatClient("bob", "bob-password", service, protocol=protocol, audit=audit,
                     client_ip="10.0.0.2")

    print_header("Registration")
    for client in (alice, bob):
        client.register()
        print(f"  {client.username:<6} public key {client.public_key[:20]}...")

    print_header("Login")
    for client in (alice, bob):
        client.login()
        print(f"  {client.username:<6} logged in")

    response = forged_login(service, "alice", bob)
    print(f"  bob as alice: {response['status']} {response['message']}")

    print_header("Messaging")
    alice.send("bob", "Hi Bob, this is Alice.")
    for message in bob.receive():
        print(f"  {message.sender} -> {message.receiver}: {message.text!r} [{message.status.value}]")

    print(f"  alice fingerprint (as seen by bob): {bob.contact_fingerprint('alice')}")

    print_header("Audit log")
    print(f"  {len(audit)} events, chain intact: {audit.verify_integrity()}")
    return audit


def main(argv=None):
    """Main entry point for the tofuchat demo."""
    parser = argparse.ArgumentParser(prog="tofuchat-demo", description=__doc__)
    parser.add_argument("--cipher", choices=("xor", "aes-gcm"), default=None,
                        help="symmetric cipher (default: TOFUCHAT_CIPHER or xor)")
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--json-logs", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(args.log_level, json_output=args.json_logs)
    config = ChatConfig.from_env()
    if args.cipher:
        config = replace(config, cipher=args.cipher)

    print("=" * 50)
    print("Welcome to tofuchat")
    print("=" * 50)
    run_demo(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
