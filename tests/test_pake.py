"""Tests for the SPAKE2 + X25519 adapter."""

import pytest

from relaypake.crypto.pake import (
    ClientSecret, PakeCode, PakeErrorCode, client_finish, client_init, password_record, server_auth,
    server_verify,
)
from relaypake.protocol.errors import PakeRejected

PEPPER = b"server-pepper"
ITERATIONS = 1000


@pytest.fixture
def exchange():
    state, data = client_init("root", "correct horse battery staple")
    server_data, final = server_auth(data, data.pw, PEPPER, ITERATIONS)
    return state, data, server_data, final


class TestHandshake:

    def test_both_sides_agree(self, exchange):
        state, _, server_data, final = exchange
        outcome = client_finish(state, server_data, ITERATIONS)
        assert isinstance(outcome, ClientSecret)
        assert outcome.token == final.token
        assert server_verify(final, outcome.client_auth_result)

    def test_token_is_hex(self, exchange):
        _, _, _, final = exchange
        assert len(bytes.fromhex(final.token)) == 32

    def test_client_auth_data_fields(self, exchange):
        _, data, _, _ = exchange
        assert data.sid == "root"
        assert len(data.pw) == 32
        assert len(data.Xu) == 32

    def test_fresh_sessions_differ(self):
        _, data = client_init("root", "pw")
        _, first = server_auth(data, data.pw, PEPPER, ITERATIONS)
        _, second = server_auth(data, data.pw, PEPPER, ITERATIONS)
        assert first.token != second.token


class TestClientRejections:

    def test_server_for_another_password(self):
        state, _ = client_init("root", "one")
        _, other = client_init("root", "two")
        server_data, _ = server_auth(other, other.pw, PEPPER, ITERATIONS)
        outcome = client_finish(state, server_data, ITERATIONS)
        assert outcome == PakeErrorCode(PakeCode.BAD_ENVELOPE)

    def test_forged_server_proof(self, exchange):
        state, _, server_data, _ = exchange
        forged = server_data.model_copy(update={"As": bytes(32)})
        assert client_finish(state, forged, ITERATIONS) == PakeErrorCode(PakeCode.BAD_SERVER_PROOF)

    def test_garbage_beta(self, exchange):
        state, _, server_data, _ = exchange
        forged = server_data.model_copy(update={"beta": b"\x00"})
        assert client_finish(state, forged, ITERATIONS) == PakeErrorCode(PakeCode.BAD_MESSAGE)

    def test_iteration_mismatch(self, exchange):
        state, _, server_data, _ = exchange
        assert client_finish(state, server_data, ITERATIONS + 1) == PakeErrorCode(PakeCode.BAD_ENVELOPE)


class TestServerRejections:

    def test_bad_ephemeral_key(self):
        _, data = client_init("root", "pw")
        with pytest.raises(PakeRejected) as exc:
            server_auth(data.model_copy(update={"Xu": b"short"}), data.pw, PEPPER, ITERATIONS)
        assert exc.value.code == PakeCode.BAD_MESSAGE

    def test_wrong_client_proof(self, exchange):
        state, _, server_data, final = exchange
        outcome = client_finish(state, server_data, ITERATIONS)
        forged = outcome.client_auth_result.model_copy(update={"Au": bytes(32)})
        assert not server_verify(final, forged)

    def test_password_other_than_registered(self):
        _, registered = client_init("root", "operator password")
        _, guess = client_init("root", "wrong password")
        with pytest.raises(PakeRejected) as exc:
            server_auth(guess, registered.pw, PEPPER, ITERATIONS)
        assert exc.value.code == PakeCode.BAD_CREDENTIALS


class TestPasswordRecord:
    """The record a client sends must be reproducible from the password alone."""

    def test_same_password_same_record(self):
        _, first = client_init("root", "operator password")
        _, second = client_init("root", "operator password")
        assert first.pw == second.pw == password_record("root", "operator password")

    def test_bound_to_user(self):
        assert password_record("root", "pw") != password_record("admin", "pw")

    def test_explicit_salt(self):
        assert password_record("root", "pw", b"s" * 16) != password_record("root", "pw")
