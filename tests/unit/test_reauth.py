"""Unit tests for the re-authentication gate"""

import asyncio

from nova_bank.assistant.reauth import GateState, ReauthenticationGate
from nova_bank.domain.exceptions import ExternalServiceError, NotAuthenticatedError
from tests.fakes import FakeAuthenticator


def make_gate(authenticator, credential_ids=("cred-1",), timeout_seconds=1.0) -> ReauthenticationGate:
    return ReauthenticationGate(authenticator, "user-1", lambda: list(credential_ids), timeout_seconds=timeout_seconds)


async def test_gate_starts_locked():
    """Test nothing is authorized before a challenge"""
    gate = make_gate(FakeAuthenticator(True))
    assert gate.state is GateState.LOCKED


async def test_granted_challenge_unlocks_once():
    """Test a verified challenge unlocks until consumed"""
    authenticator = FakeAuthenticator(True)
    gate = make_gate(authenticator, credential_ids=("cred-1", "cred-2"))

    assert await gate.authorize("transfer_money") is True
    assert gate.state is GateState.UNLOCKED
    assert authenticator.calls == [{"user_id": "user-1", "credential_ids": ["cred-1", "cred-2"]}]

    gate.consume()
    assert gate.state is GateState.LOCKED


async def test_every_call_runs_a_fresh_challenge():
    """Test a grant is never reused for the next sensitive call"""
    authenticator = FakeAuthenticator(True, False)
    gate = make_gate(authenticator)

    assert await gate.authorize("transfer_money") is True
    gate.consume()
    assert await gate.authorize("transfer_money") is False
    assert len(authenticator.calls) == 2


async def test_declined_challenge_stays_locked():
    """Test a user cancelling the prompt"""
    gate = make_gate(FakeAuthenticator(False))

    assert await gate.authorize("make_account_payment") is False
    assert gate.state is GateState.LOCKED


async def test_no_passkeys_denies_without_prompting():
    """Test a user with no credentials can never unlock"""
    authenticator = FakeAuthenticator(True)
    gate = make_gate(authenticator, credential_ids=())

    assert await gate.authorize("transfer_money") is False
    assert authenticator.calls == []


async def test_authenticator_error_denies():
    """Test verifier failures count as a denial"""
    gate = make_gate(FakeAuthenticator(ExternalServiceError("verifier down")))

    assert await gate.authorize("apply_for_loan") is False
    assert gate.state is GateState.LOCKED


async def test_challenge_timeout_denies():
    """Test a prompt left unanswered past the timeout"""

    class SlowAuthenticator:
        async def challenge(self, user_id, credential_ids):
            await asyncio.sleep(5)
            return True

    gate = make_gate(SlowAuthenticator(), timeout_seconds=0.05)

    assert await gate.authorize("transfer_money") is False


async def test_credential_lookup_failure_denies():
    """Test a failure loading passkeys denies instead of raising"""

    def _broken():
        raise NotAuthenticatedError()

    gate = ReauthenticationGate(FakeAuthenticator(True), "user-1", _broken)

    assert await gate.authorize("transfer_money") is False
