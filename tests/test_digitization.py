"""Tests for template digitization."""

import pytest
import requests

from dealer_contracts.contracts.exceptions import InvalidState, UpstreamFailure, ValidationError
from dealer_contracts.contracts.models import ContractStatus, DigitizationStatus, FieldType, SignerRole
from dealer_contracts.digitization import (
    DigitizationProcessor,
    HttpExtractionEngine,
    NullExtractionEngine,
    parse_fields,
)

from conftest import BUYER_AND_DEALER_FIELDS, ORIGINAL_PDF, SIGNATURE_PNG


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class TestProcessor:
    """Tests for DigitizationProcessor."""

    def test_extraction_completes(self, services, repository, make_contract, engine):
        contract = make_contract(fields=None)

        submitted = services.digitization.submit(contract)
        assert submitted.digitization.status == DigitizationStatus.PROCESSING
        services.digitization.wait(contract.id, timeout=5)

        loaded = repository.get("t1", contract.id)
        assert loaded.digitization.status == DigitizationStatus.COMPLETED
        assert len(loaded.digitization.extracted_fields) == 3
        assert len(loaded.digitization.signature_fields) == 2
        assert loaded.status == ContractStatus.DRAFT
        assert engine.calls == [(contract.original_document_url, "t1", contract.id)]

    def test_explicit_template_url(self, services, store, make_contract, engine):
        template_url = store.put(ORIGINAL_PDF, "application/pdf", "templates/t1/other.pdf")
        contract = make_contract(fields=None)
        services.digitization.submit(contract, template_url)
        services.digitization.wait(contract.id, timeout=5)

        assert engine.calls[0][0] == template_url

    @pytest.mark.parametrize("template_url", [
        "file:///etc/hostname",
        "http://169.254.169.254/latest/meta-data/",
    ])
    def test_template_outside_store_rejected(self, services, repository, make_contract, engine, template_url):
        contract = make_contract(fields=None)

        with pytest.raises(ValidationError) as exc_info:
            services.digitization.submit(contract, template_url)

        assert exc_info.value.field == "template_url"
        assert engine.calls == []
        assert repository.get("t1", contract.id).digitization.status == DigitizationStatus.PENDING

    def test_engine_failure(self, services, repository, make_contract, engine):
        engine.error = "ocr service down"
        contract = make_contract(fields=None)

        services.digitization.submit(contract)
        services.digitization.wait(contract.id, timeout=5)

        loaded = repository.get("t1", contract.id)
        assert loaded.digitization.status == DigitizationStatus.FAILED
        assert "ocr service down" in loaded.digitization.error
        assert loaded.status == ContractStatus.DRAFT

    def test_invalid_layout_from_engine(self, services, repository, make_contract, engine):
        engine.fields = [dict(BUYER_AND_DEALER_FIELDS[0], x=0.9)]
        contract = make_contract(fields=None)

        services.digitization.submit(contract)
        services.digitization.wait(contract.id, timeout=5)

        assert repository.get("t1", contract.id).digitization.status == DigitizationStatus.FAILED

    def test_deferred_result(self, services, repository, make_contract, engine):
        engine.deferred = True
        contract = make_contract(fields=None)

        services.digitization.submit(contract)
        services.digitization.wait(contract.id, timeout=5)
        assert repository.get("t1", contract.id).digitization.status == DigitizationStatus.PROCESSING

        updated = services.digitization.handle_result(
            "t1", contract.id, BUYER_AND_DEALER_FIELDS, document_url="file:///digitized.pdf",
        )

        assert updated.digitization.status == DigitizationStatus.COMPLETED
        assert updated.digitized_document_url == "file:///digitized.pdf"

    def test_result_without_processing(self, services, make_contract):
        contract = make_contract(fields=None)
        with pytest.raises(InvalidState):
            services.digitization.handle_result("t1", contract.id, BUYER_AND_DEALER_FIELDS)

    def test_resubmit_keeps_fields_until_done(self, services, make_contract, engine):
        engine.deferred = True
        contract = make_contract()

        submitted = services.digitization.submit(contract)

        assert submitted.digitization.status == DigitizationStatus.PROCESSING
        assert len(submitted.digitization.extracted_fields) == 3
        services.digitization.wait(contract.id, timeout=5)

    def test_submit_after_signature(self, services, signing, repository, make_contract):
        contract = make_contract()
        signing.sign_in_person("t1", contract.id, "buyer", "Bea Buyer", SIGNATURE_PNG)

        with pytest.raises(InvalidState):
            services.digitization.submit(repository.get("t1", contract.id))

    def test_submit_cancelled(self, services, repository, make_contract):
        contract = make_contract(fields=None)
        cancelled = repository.cancel("t1", contract.id)
        with pytest.raises(InvalidState):
            services.digitization.submit(cancelled)

    def test_resubmit_without_engine_keeps_layout(self, services, signing, repository, store, make_contract, clock):
        """An engine that detects nothing leaves hand-defined fields in place."""
        contract = make_contract()
        buyer = signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")
        dealer = signing.invite("t1", contract.id, "dealer", "dana@example.com", "Dana Dealer")
        processor = DigitizationProcessor(repository, engine=NullExtractionEngine(), clock=clock, store=store)

        processor.submit(repository.get("t1", contract.id))
        processor.wait(contract.id, timeout=5)
        processor.shutdown()

        loaded = repository.get("t1", contract.id)
        assert loaded.digitization.status == DigitizationStatus.FAILED
        assert "no fields" in loaded.digitization.error
        assert len(loaded.digitization.extracted_fields) == 3

        signing.complete_by_token(buyer.token, SIGNATURE_PNG)
        final, _ = signing.complete_by_token(dealer.token, SIGNATURE_PNG)
        assert final.status == ContractStatus.COMPLETED

    def test_empty_result_rejected(self, services, repository, make_contract, engine):
        engine.deferred = True
        contract = make_contract()
        services.digitization.submit(contract)
        services.digitization.wait(contract.id, timeout=5)

        with pytest.raises(ValidationError):
            services.digitization.handle_result("t1", contract.id, [])

        loaded = repository.get("t1", contract.id)
        assert loaded.digitization.status == DigitizationStatus.PROCESSING
        assert len(loaded.digitization.extracted_fields) == 3

    def test_late_result_does_not_overwrite_manual_fields(self, services, repository, make_contract, engine):
        engine.deferred = True
        contract = make_contract(fields=None)
        services.digitization.submit(contract)
        services.digitization.wait(contract.id, timeout=5)
        services.digitization.define_fields("t1", contract.id, BUYER_AND_DEALER_FIELDS[:1])

        with pytest.raises(InvalidState):
            services.digitization.handle_result("t1", contract.id, BUYER_AND_DEALER_FIELDS)
        with pytest.raises(InvalidState):
            services.digitization.handle_failure("t1", contract.id, "timed out")

        loaded = repository.get("t1", contract.id)
        assert loaded.digitization.status == DigitizationStatus.COMPLETED
        assert [f.id for f in loaded.digitization.extracted_fields] == ["buyer_sig"]

    def test_late_engine_failure_is_dropped(self, services, repository, make_contract, engine):
        engine.deferred = True
        contract = make_contract(fields=None)
        services.digitization.submit(contract)
        services.digitization.wait(contract.id, timeout=5)
        services.digitization.define_fields("t1", contract.id, BUYER_AND_DEALER_FIELDS)

        services.digitization._record_failure("t1", contract.id, "timed out")

        assert repository.get("t1", contract.id).digitization.status == DigitizationStatus.COMPLETED


class TestManualFields:
    """Tests for staff-defined layouts."""

    def test_define_fields(self, services, make_contract):
        contract = make_contract(fields=None)
        updated = services.digitization.define_fields("t1", contract.id, BUYER_AND_DEALER_FIELDS)

        assert updated.digitization.status == DigitizationStatus.COMPLETED
        assert updated.digitization.extracted_fields[1].type == FieldType.DATE
        assert updated.digitization.extracted_fields[2].signer == SignerRole.DEALER

    def test_empty_layout(self, services, make_contract):
        contract = make_contract(fields=None)
        with pytest.raises(ValidationError):
            services.digitization.define_fields("t1", contract.id, [])

    def test_malformed_field(self):
        with pytest.raises(ValidationError):
            parse_fields([{"id": "x", "type": "signature", "x": 0.1}])
        with pytest.raises(ValidationError):
            parse_fields([dict(BUYER_AND_DEALER_FIELDS[0], signer="notary")])

    def test_fields_without_signature_box(self, services, signing, make_contract):
        """A layout with only date boxes cannot be sent for signing."""
        contract = make_contract(fields=[BUYER_AND_DEALER_FIELDS[1]])
        with pytest.raises(InvalidState):
            signing.invite("t1", contract.id, "buyer", "bea@example.com", "Bea Buyer")

    def test_redefine_must_keep_invited_signature_boxes(self, services, signing, repository, make_contract):
        contract = make_contract()
        signing.invite("t1", contract.id, "dealer", "dana@example.com", "Dana Dealer")

        with pytest.raises(InvalidState) as exc_info:
            services.digitization.define_fields("t1", contract.id, BUYER_AND_DEALER_FIELDS[:2])
        assert "dealer" in str(exc_info.value)
        with pytest.raises(InvalidState):
            services.digitization.define_fields("t1", contract.id, [BUYER_AND_DEALER_FIELDS[1]])

        assert len(repository.get("t1", contract.id).digitization.extracted_fields) == 3

    def test_redefine_keeping_invited_boxes(self, services, signing, make_contract):
        contract = make_contract()
        signing.invite("t1", contract.id, "dealer", "dana@example.com", "Dana Dealer")

        updated = services.digitization.define_fields("t1", contract.id, BUYER_AND_DEALER_FIELDS[2:])

        assert [f.id for f in updated.digitization.extracted_fields] == ["dealer_sig"]


class TestHttpExtractionEngine:
    """Tests for the HTTP extraction engine."""

    def test_synchronous_result(self, monkeypatch):
        captured = {}

        def fake_post(url, json=None, headers=None, timeout=None):
            captured.update(url=url, json=json, headers=headers)
            return FakeResponse(200, {"fields": BUYER_AND_DEALER_FIELDS})

        monkeypatch.setattr(requests, "post", fake_post)
        engine = HttpExtractionEngine(
            "https://ocr.example.com/extract", api_key="k1", callback_base_url="https://api.example.com/",
        )

        fields = engine.extract("file:///t.pdf", "t1", "c1")

        assert [f.id for f in fields] == ["buyer_sig", "buyer_date", "dealer_sig"]
        assert captured["headers"]["Authorization"] == "Bearer k1"
        assert captured["json"]["callback_url"] == "https://api.example.com/v1/contracts/c1/digitization/callback"

    def test_accepted_for_callback(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(202))
        assert HttpExtractionEngine("https://ocr.example.com").extract("file:///t.pdf", "t1", "c1") is None

    def test_service_error(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(503))
        with pytest.raises(UpstreamFailure) as exc_info:
            HttpExtractionEngine("https://ocr.example.com").extract("file:///t.pdf", "t1", "c1")
        assert exc_info.value.status_code == 503

    def test_connection_error(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", refuse)
        with pytest.raises(UpstreamFailure):
            HttpExtractionEngine("https://ocr.example.com").extract("file:///t.pdf", "t1", "c1")
