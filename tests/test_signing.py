"""Tests for the signature request protocol."""

import pytest

from dealer_contracts.contracts.exceptions import (
    InvalidState,
    NotFound,
    TokenExpired,
    ValidationError,
)
from dealer_contracts.contracts.models import (
    ContractStatus,
    DeliveryChannel,
    DeliveryStatus,
    SignatureStatus,
    SignatureType,
    SignerRole,
)
from dealer_contracts.signing.tokens import normalize_signature_data, token_hint
from dealer_contracts.storage import RevokeReason

from conftest import SIGNATURE_PNG


class TestInvite:
    """Tests for inviting signers."""

    def test_invite_creates_session(self, signing, repository, make_contract, clock):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        assert len(invitation.token) >= 43
        assert invitation.url == f"https://sign.example.com/contracts/{invitation.token}"
        assert invitation.expires_at.day == 8

        loaded = repository.get("t1", contract.id)
        assert loaded.status == ContractStatus.PENDING_SIGNATURES
        sig = loaded.get_signature(invitation.signature_id)
        assert sig.status == SignatureStatus.SENT
        assert sig.signer == SignerRole.BUYER
        assert sig.token == invitation.token
        assert sig.invited_at == clock()

        record = repository.find_token(invitation.token)
        assert record.contract_id == contract.id
        assert record.signature_id == sig.id
        assert not record.is_revoked

    def test_tokens_are_unique(self, signing, make_contract):
        contract = make_contract()
        buyer = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        dealer = signing.invite("t1", contract.id, "dealer", "dana@example.com", "Dana Dealer")
        assert buyer.token != dealer.token
        assert buyer.signature_id != dealer.signature_id

    def test_requires_signature_fields(self, signing, make_contract):
        contract = make_contract(fields=None)
        with pytest.raises(InvalidState):
            signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

    def test_requires_contact(self, signing, make_contract):
        contract = make_contract()
        with pytest.raises(ValidationError):
            signing.invite("t1", contract.id, "buyer", None, "Bea Buyer")

    @pytest.mark.parametrize("days", [0, -1, 91])
    def test_expiry_bounds(self, signing, make_contract, days):
        contract = make_contract()
        with pytest.raises(ValidationError):
            signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer", expires_in_days=days)

    def test_unknown_role(self, signing, make_contract):
        contract = make_contract()
        with pytest.raises(ValidationError):
            signing.invite("t1", contract.id, "notary", "bea@example.com", "Bea Buyer")

    def test_channel_without_recipient(self, signing, make_contract):
        contract = make_contract()
        with pytest.raises(ValidationError):
            signing.invite(
                "t1", contract.id, "buyer", "bea@example.com", "Bea Buyer",
                channels=[DeliveryChannel.SMS],
            )

    def test_cancelled_contract(self, signing, repository, make_contract):
        contract = make_contract()
        repository.cancel("t1", contract.id)
        with pytest.raises(InvalidState):
            signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

    def test_invite_is_delivered_and_recorded(
        self, services, signing, repository, make_contract, email_channel, sms_channel
    ):
        contract = make_contract()
        invitation = signing.invite(
            "t1", contract.id, "buyer", "bea@example.com", "Bea Buyer", phone="+15550100",
        )
        services.dispatcher.flush(timeout=5)

        assert email_channel.sent[0][0] == "bea@example.com"
        message = email_channel.sent[0][1]
        assert invitation.url in message["body_text"]
        assert "Bea Buyer" in message["body_text"]
        assert sms_channel.sent[0][0] == "+15550100"

        records = repository.get("t1", contract.id).notifications_sent
        assert {r.channel for r in records} == {DeliveryChannel.EMAIL, DeliveryChannel.SMS}
        assert all(r.status == DeliveryStatus.SENT for r in records)
        assert all(r.signature_id == invitation.signature_id for r in records)

    def test_failed_delivery_does_not_fail_invite(
        self, services, signing, repository, make_contract, email_channel
    ):
        email_channel.fail = True
        contract = make_contract()

        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        services.dispatcher.flush(timeout=5)

        loaded = repository.get("t1", contract.id)
        assert loaded.get_signature(invitation.signature_id).status == SignatureStatus.SENT
        assert loaded.notifications_sent[0].status == DeliveryStatus.FAILED
        assert "provider down" in loaded.notifications_sent[0].error


class TestReinvite:
    """Tests for re-inviting a role."""

    def test_reinvite_supersedes_old_token(self, signing, repository, make_contract):
        contract = make_contract()
        first = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        second = signing.invite("t1", contract.id, "buyer", "bea.b@example.com", "Bea Buyer")

        assert second.token != first.token
        assert second.signature_id == first.signature_id

        loaded = repository.get("t1", contract.id)
        assert len([s for s in loaded.signatures if s.signer == SignerRole.BUYER]) == 1
        assert loaded.signatures[0].signer_email == "bea.b@example.com"
        assert repository.find_token(first.token).revoked_reason == RevokeReason.SUPERSEDED

        with pytest.raises(NotFound):
            signing.resolve(first.token)
        _, sig = signing.resolve(second.token)
        assert sig.status == SignatureStatus.VIEWED

    def test_reinvite_after_signing(self, signing, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        signing.complete_by_token(invitation.token, SIGNATURE_PNG)

        with pytest.raises(InvalidState):
            signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

    def test_reinvite_after_decline(self, signing, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        signing.decline_by_token(invitation.token, reason="wrong price")

        with pytest.raises(InvalidState):
            signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

    def test_reinvite_after_expiry(self, signing, make_contract, clock):
        contract = make_contract()
        first = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer", expires_in_days=1)
        clock.advance(days=2)
        with pytest.raises(TokenExpired):
            signing.resolve(first.token)

        second = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        _, sig = signing.resolve(second.token)

        assert sig.id == first.signature_id
        assert sig.status == SignatureStatus.VIEWED


class TestResolve:
    """Tests for opening a signing session."""

    def test_first_resolve_marks_viewed(self, signing, make_contract, clock):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        clock.advance(minutes=5)

        loaded, sig = signing.resolve(invitation.token)

        assert loaded.id == contract.id
        assert sig.status == SignatureStatus.VIEWED
        assert sig.viewed_at == clock()

    def test_second_resolve_does_not_write(self, signing, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        first, _ = signing.resolve(invitation.token)
        second, sig = signing.resolve(invitation.token)

        assert second.version == first.version
        assert sig.status == SignatureStatus.VIEWED

    def test_unknown_token(self, signing):
        with pytest.raises(NotFound):
            signing.resolve("not-a-real-token")

    def test_resolve_after_cancel(self, signing, repository, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        repository.cancel("t1", contract.id)

        with pytest.raises(InvalidState):
            signing.resolve(invitation.token)


class TestCompleteAndDecline:
    """Tests for capturing and declining signatures."""

    def test_complete_records_signature(self, signing, repository, make_contract, clock):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        signing.resolve(invitation.token)

        updated, sig = signing.complete_by_token(
            invitation.token, f"data:image/png;base64,{SIGNATURE_PNG}",
            ip_address="203.0.113.9", user_agent="pytest",
        )

        assert sig.id == invitation.signature_id
        assert sig.status == SignatureStatus.SIGNED
        assert sig.signature_data == SIGNATURE_PNG
        assert sig.signed_at == clock()
        assert sig.ip_address == "203.0.113.9"
        assert sig.token is None
        assert updated.status == ContractStatus.PARTIALLY_SIGNED
        assert repository.find_token(invitation.token).revoked_reason == RevokeReason.SIGNED

    def test_token_is_single_use(self, signing, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        signing.complete_by_token(invitation.token, SIGNATURE_PNG)

        with pytest.raises(InvalidState):
            signing.complete_by_token(invitation.token, SIGNATURE_PNG)
        with pytest.raises(InvalidState):
            signing.resolve(invitation.token)
        with pytest.raises(InvalidState):
            signing.decline_by_token(invitation.token)

    def test_bad_signature_data(self, signing, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        with pytest.raises(ValidationError):
            signing.complete_by_token(invitation.token, "not base64 !!")
        with pytest.raises(ValidationError):
            signing.complete_by_token(invitation.token, "")

    def test_decline(self, signing, repository, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        updated, sig = signing.decline_by_token(invitation.token, reason="wrong trade-in value")

        assert sig.id == invitation.signature_id
        assert sig.status == SignatureStatus.DECLINED
        assert sig.decline_reason == "wrong trade-in value"
        assert updated.status == ContractStatus.PENDING_SIGNATURES
        assert repository.find_token(invitation.token).revoked_reason == RevokeReason.DECLINED

        with pytest.raises(InvalidState):
            signing.complete_by_token(invitation.token, SIGNATURE_PNG)

    def test_complete_with_stale_token(self, signing, make_contract):
        """A superseded token cannot sign even when addressed by signature id."""
        contract = make_contract()
        first = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        with pytest.raises(InvalidState):
            signing.complete("t1", contract.id, first.signature_id, SIGNATURE_PNG, token=first.token)


class TestExpiry:
    """Tests for signing link expiry."""

    def test_expired_link_is_rejected(self, signing, repository, make_contract, clock):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        clock.advance(days=8)

        with pytest.raises(TokenExpired):
            signing.resolve(invitation.token)

        loaded = repository.get("t1", contract.id)
        assert loaded.get_signature(invitation.signature_id).status == SignatureStatus.EXPIRED
        assert loaded.status == ContractStatus.PENDING_SIGNATURES
        assert repository.find_token(invitation.token).revoked_reason == RevokeReason.EXPIRED

        with pytest.raises(TokenExpired):
            signing.complete_by_token(invitation.token, SIGNATURE_PNG)

    def test_complete_after_expiry(self, signing, repository, make_contract, clock):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        signing.resolve(invitation.token)
        clock.advance(days=7, seconds=1)

        with pytest.raises(TokenExpired):
            signing.complete_by_token(invitation.token, SIGNATURE_PNG)
        sig = repository.get("t1", contract.id).get_signature(invitation.signature_id)
        assert sig.status == SignatureStatus.EXPIRED
        assert sig.signature_data is None

    def test_expire_stale(self, signing, repository, make_contract, clock):
        contract = make_contract()
        short = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer", expires_in_days=1)
        long = signing.invite("t1", contract.id, "dealer", "dana@example.com", "Dana Dealer", expires_in_days=10)
        clock.advance(days=2)

        assert signing.expire_stale() == 1
        assert signing.expire_stale() == 0

        loaded = repository.get("t1", contract.id)
        assert loaded.get_signature(short.signature_id).status == SignatureStatus.EXPIRED
        assert loaded.get_signature(long.signature_id).status == SignatureStatus.SENT

    def test_remind_keeps_token(self, services, signing, make_contract, email_channel):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        reminder = signing.remind("t1", contract.id, invitation.signature_id)
        services.dispatcher.flush(timeout=5)

        assert reminder.token == invitation.token
        assert len(email_channel.sent) == 2
        assert email_channel.sent[1][1]["subject"].startswith("Reminder:")

    def test_remind_expired(self, signing, repository, make_contract, clock):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer", expires_in_days=1)
        clock.advance(days=2)

        with pytest.raises(TokenExpired):
            signing.remind("t1", contract.id, invitation.signature_id)
        loaded = repository.get("t1", contract.id)
        assert loaded.get_signature(invitation.signature_id).status == SignatureStatus.EXPIRED


class TestInPerson:
    """Tests for signatures captured at the dealership."""

    def test_in_person_without_invite(self, signing, make_contract):
        contract = make_contract()
        updated = signing.sign_in_person(
            "t1", contract.id, "dealer", "Dana Dealer", SIGNATURE_PNG, actor="dana",
        )

        sig = updated.get_signature_for_role(SignerRole.DEALER)
        assert sig.signature_type == SignatureType.IN_PERSON
        assert sig.status == SignatureStatus.SIGNED
        assert sig.token is None
        assert updated.status == ContractStatus.PARTIALLY_SIGNED

    def test_in_person_supersedes_remote_link(self, signing, repository, make_contract):
        contract = make_contract()
        invitation = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

        updated = signing.sign_in_person("t1", contract.id, "buyer", "Bea Buyer", SIGNATURE_PNG)

        assert updated.get_signature(invitation.signature_id).signature_type == SignatureType.IN_PERSON
        assert repository.find_token(invitation.token).revoked_reason == RevokeReason.SUPERSEDED
        with pytest.raises(NotFound):
            signing.resolve(invitation.token)

    def test_in_person_twice(self, signing, make_contract):
        contract = make_contract()
        signing.sign_in_person("t1", contract.id, "buyer", "Bea Buyer", SIGNATURE_PNG)
        with pytest.raises(InvalidState):
            signing.sign_in_person("t1", contract.id, "buyer", "Bea Buyer", SIGNATURE_PNG)


class TestTokenHelpers:
    """Tests for token and payload helpers."""

    def test_token_hint_hides_token(self):
        assert token_hint("abcdefghijklmnop") == "abcdef..."
        assert token_hint(None) == "-"

    def test_data_url_prefix_is_stripped(self):
        assert normalize_signature_data(f"data:image/png;base64,{SIGNATURE_PNG}") == SIGNATURE_PNG

    def test_non_base64_data_url(self):
        with pytest.raises(ValidationError):
            normalize_signature_data("data:image/svg+xml,<svg/>")
