import importlib.util
import socket
import threading
from pathlib import Path

import pytest

from ic_web3.authority import LocalEcdsaAuthority, RemoteEcdsaAuthority, encode_derivation_path
from ic_web3.ecdsa import EthSigningFacade
from ic_web3.errors import AuthorityRejected, InsufficientBudget, RejectionCode, SignerUnreachable
from ic_web3.recovery import verify
from ic_web3.types import KeyId, KeyInfo

CANISTER_ID = "rrkah-fqaaa-aaaaa-aaaaq-cai"
SEED = b"\x42" * 32
PATH = (b"\x00\x00\x00\x01",)


def load_module():
    module_path = Path(__file__).resolve().parents[1] / "enclave" / "signer_server.py"
    spec = importlib.util.spec_from_file_location("enclave_signer_server", module_path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def authority():
    return LocalEcdsaAuthority(master_seed=SEED, caller=CANISTER_ID, key_names=frozenset({"test_key"}))


def key_id_param(name="test_key"):
    return {"curve": "secp256k1", "name": name}


def test_public_key_request_matches_local_authority(authority):
    module = load_module()

    response = module.handle_request(
        {
            "method": "ecdsa_public_key",
            "params": {
                "caller": CANISTER_ID,
                "derivation_path": encode_derivation_path(PATH),
                "key_id": key_id_param(),
            },
        },
        authority=authority,
    )

    expected = authority.public_key_for(CANISTER_ID, PATH, KeyId("test_key"))
    assert response == {"result": {"public_key": "0x" + expected.hex()}}


def test_sign_request_returns_64_byte_signature(authority):
    module = load_module()

    response = module.handle_request(
        {
            "method": "sign_with_ecdsa",
            "params": {
                "message_hash": "0x" + "00" * 32,
                "derivation_path": encode_derivation_path(PATH),
                "key_id": key_id_param(),
                "cycles": 30_000_000_000,
            },
        },
        authority=authority,
    )

    signature = bytes.fromhex(response["result"]["signature"][2:])
    assert len(signature) == 64


def test_underpaid_sign_request_is_tagged(authority):
    module = load_module()

    response = module.handle_request(
        {
            "method": "sign_with_ecdsa",
            "params": {
                "message_hash": "0x" + "00" * 32,
                "derivation_path": [],
                "key_id": key_id_param(),
                "cycles": "0x1",
            },
        },
        authority=authority,
    )

    assert response["error"]["code"] == int(RejectionCode.CANISTER_REJECT)
    assert response["error"]["reason"] == "insufficient_cycles"


@pytest.mark.parametrize(
    "params",
    [
        {"derivation_path": "0x00", "key_id": key_id_param()},
        {"derivation_path": ["00"], "key_id": key_id_param()},
        {"derivation_path": [], "key_id": {"curve": "ed25519", "name": "test_key"}},
        {"derivation_path": [], "key_id": "test_key"},
    ],
)
def test_malformed_params_are_rejected(authority, params):
    module = load_module()

    response = module.handle_request({"method": "ecdsa_public_key", "params": params}, authority=authority)

    assert response["error"]["code"] == int(RejectionCode.CANISTER_REJECT)
    assert "reason" not in response["error"]


def test_unknown_key_and_method(authority):
    module = load_module()

    response = module.handle_request(
        {"method": "ecdsa_public_key", "params": {"derivation_path": [], "key_id": key_id_param("nope")}},
        authority=authority,
    )
    assert "unknown threshold key" in response["error"]["message"]

    response = module.handle_request({"method": "schnorr_public_key", "params": {}}, authority=authority)
    assert response["error"]["code"] == int(RejectionCode.DESTINATION_INVALID)


def serve_pair(module, authority, monkeypatch, remote):
    threads = []

    def fake_connect():
        client, server = socket.socketpair()
        thread = threading.Thread(target=module.serve_connection, args=(server, authority), daemon=True)
        thread.start()
        threads.append(thread)
        return client

    monkeypatch.setattr(remote, "_connect", fake_connect)
    return threads


@pytest.mark.anyio("asyncio")
async def test_remote_authority_round_trip(authority, monkeypatch):
    module = load_module()
    remote = RemoteEcdsaAuthority(endpoint="tcp://127.0.0.1:1", caller=CANISTER_ID)
    threads = serve_pair(module, authority, monkeypatch, remote)

    facade = EthSigningFacade.create(remote, canister_id=CANISTER_ID, key_name="test_key")
    local = EthSigningFacade.create(authority, canister_id=CANISTER_ID, key_name="test_key")

    address = await facade.get_eth_address(None, PATH)
    assert address == await local.get_eth_address(None, PATH)

    digest = bytes(range(32))
    signature = await facade.sign_recoverable(digest, KeyInfo(derivation_path=PATH, key_name="test_key"))
    assert verify(address.hex(), digest, signature) is True

    for thread in threads:
        thread.join(timeout=5)


@pytest.mark.anyio("asyncio")
async def test_remote_authority_maps_rejections(authority, monkeypatch):
    module = load_module()
    remote = RemoteEcdsaAuthority(endpoint="tcp://127.0.0.1:1", caller=CANISTER_ID)
    serve_pair(module, authority, monkeypatch, remote)
    facade = EthSigningFacade.create(remote, canister_id=CANISTER_ID, key_name="test_key")

    with pytest.raises(InsufficientBudget):
        await facade.sign_raw_digest(
            b"\x00" * 32,
            KeyInfo(derivation_path=PATH, key_name="test_key", ecdsa_sign_cycles=5),
        )

    with pytest.raises(SignerUnreachable) as excinfo:
        await facade.get_eth_address(None, PATH, "nope")
    assert excinfo.value.code is RejectionCode.CANISTER_REJECT


@pytest.mark.anyio("asyncio")
async def test_remote_authority_unreachable_is_transient(monkeypatch):
    remote = RemoteEcdsaAuthority(endpoint="tcp://127.0.0.1:1", caller=CANISTER_ID)

    def refuse():
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(remote, "_connect", refuse)

    with pytest.raises(AuthorityRejected) as excinfo:
        await remote.ecdsa_public_key(None, PATH, KeyId("test_key"))
    assert excinfo.value.code is RejectionCode.SYS_TRANSIENT


def test_remote_authority_rejects_bad_scheme():
    remote = RemoteEcdsaAuthority(endpoint="http://127.0.0.1:5000", caller=CANISTER_ID)
    with pytest.raises(AuthorityRejected) as excinfo:
        remote._connect()
    assert excinfo.value.code is RejectionCode.DESTINATION_INVALID
