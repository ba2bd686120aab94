"""
Gender inference and pending-customer enrichment tests.

The Anthropic client is an AsyncMock; nothing leaves the process.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from audience_sync.services.enrichment_service import (
    EnrichmentService,
    GenderInference,
    GenderInferenceService,
    SYSTEM_PROMPT,
    UNKNOWN,
    build_identifier,
    build_prompt,
    parse_inference,
)


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


async def _no_sleep(seconds):
    return None


def _claude(*texts, error=None):
    """Fake AsyncAnthropic whose messages.create returns the given texts in order"""
    client = MagicMock()
    if error is not None:
        client.messages.create = AsyncMock(side_effect=error)
    else:
        client.messages.create = AsyncMock(side_effect=[
            SimpleNamespace(content=[SimpleNamespace(type="text", text=t)]) for t in texts
        ])
    return client


# ---------------------------------------------------------------------------
# Output validation
# ---------------------------------------------------------------------------

class TestParseInference:

    def test_valid_response(self):
        assert parse_inference('{"gender": "female", "confidence": 0.92}') == GenderInference("female", 0.92)

    def test_confidence_above_one_is_clamped(self):
        assert parse_inference('{"gender":"male","confidence":1.7}') == GenderInference("male", 1.0)

    def test_negative_confidence_is_clamped(self):
        assert parse_inference('{"gender":"female","confidence":-0.4}') == GenderInference("female", 0.0)

    def test_json_wrapped_in_prose(self):
        result = parse_inference('Sure! Here you go:\n```json\n{"gender": "Male", "confidence": "0.8"}\n```')
        assert result == GenderInference("male", 0.8)

    @pytest.mark.parametrize("content", [
        None,
        "",
        "I think this is a man",
        "{not json}",
        '{"gender": "robot", "confidence": 0.9}',
        '{"confidence": 0.9}',
        '{"gender": 1, "confidence": 0.9}',
    ])
    def test_unusable_output_is_unknown(self, content):
        assert parse_inference(content) == UNKNOWN

    def test_non_numeric_confidence_becomes_zero(self):
        assert parse_inference('{"gender": "male", "confidence": "very"}') == GenderInference("male", 0.0)
        assert parse_inference('{"gender": "male", "confidence": true}') == GenderInference("male", 0.0)
        assert parse_inference('{"gender": "male"}') == GenderInference("male", 0.0)


# ---------------------------------------------------------------------------
# Prompt inputs
# ---------------------------------------------------------------------------

class TestIdentifier:

    def test_prefers_name(self):
        assert build_identifier("Priya", "Sharma", "p.sharma@example.com") == ("Priya Sharma", "name")

    def test_first_name_only(self):
        assert build_identifier("Priya", None, None) == ("Priya", "name")

    def test_falls_back_to_email_local_part(self):
        assert build_identifier(None, "  ", "rahul.kumar_92@example.com") == ("rahul kumar 92", "email")

    def test_unknown_when_nothing_usable(self):
        assert build_identifier(None, None, None) == ("unknown", "unknown")
        assert build_identifier("", "", "@example.com") == ("unknown", "unknown")

    def test_prompt_carries_domain_and_country(self):
        prompt = build_prompt(None, None, "rahul.kumar@gmail.com", "India")
        assert "Primary identifier (email): rahul kumar" in prompt
        assert "Email domain: gmail.com" in prompt
        assert "Country: India" in prompt


# ---------------------------------------------------------------------------
# Inference service
# ---------------------------------------------------------------------------

class TestGenderInferenceService:

    def test_calls_messages_api(self):
        client = _claude('{"gender": "female", "confidence": 0.95}')
        service = GenderInferenceService(client=client)

        result = _run(service.infer_gender("Priya", "Sharma", "priya@example.com", "India"))

        assert result == GenderInference("female", 0.95)
        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["max_tokens"] == 50
        assert kwargs["system"] == SYSTEM_PROMPT
        assert kwargs["messages"][0]["role"] == "user"
        assert "Priya Sharma" in kwargs["messages"][0]["content"]

    def test_provider_error_is_unknown(self):
        service = GenderInferenceService(client=_claude(error=RuntimeError("overloaded")))
        assert _run(service.infer_gender("Priya", None, None, None)) == UNKNOWN

    def test_unavailable_without_api_key(self):
        service = GenderInferenceService()
        assert service.is_available() is False
        assert _run(service.infer_gender("Priya", None, None, None)) == UNKNOWN


# ---------------------------------------------------------------------------
# Pending-customer enrichment
# ---------------------------------------------------------------------------

class TestEnrichPending:

    def test_marks_pending_customers_complete(self, session_factory, add_customer, store):
        add_customer(1, first_name="Priya")
        add_customer(2, first_name="Rahul")
        add_customer(3, first_name="Done", enrichment_status="complete",
                     gender_inferred="male", gender_confidence=0.9)

        inference = GenderInferenceService(client=_claude(
            '{"gender": "female", "confidence": 0.9}',
            '{"gender": "male", "confidence": 0.8}',
        ))
        service = EnrichmentService(inference=inference, session_factory=session_factory,
                                    write_back=False, sleep=_no_sleep)

        assert _run(service.enrich_pending_customers(batch_size=10)) == 2

        store.db.expire_all()
        first, second = store.get_by_external_id(1), store.get_by_external_id(2)
        assert (first.gender_inferred, first.enrichment_status) == ("female", "complete")
        assert (second.gender_inferred, second.gender_confidence) == ("male", 0.8)
        assert inference.client.messages.create.await_count == 2

    def test_unknown_result_still_completes(self, session_factory, add_customer, store):
        add_customer(1, first_name=None, email=None)
        inference = GenderInferenceService(client=_claude("no idea"))
        service = EnrichmentService(inference=inference, session_factory=session_factory,
                                    write_back=False, sleep=_no_sleep)

        assert _run(service.enrich_pending_customers()) == 1

        store.db.expire_all()
        customer = store.get_by_external_id(1)
        assert customer.enrichment_status == "complete"
        assert customer.gender_inferred == "unknown"
        assert customer.gender_confidence == 0.0

    def test_write_back_only_for_known_gender(self, session_factory, add_customer):
        add_customer(1)
        add_customer(2)
        connector = MagicMock()
        connector.upsert_customer_metafield = AsyncMock(side_effect=[RuntimeError("shopify down")])

        inference = GenderInferenceService(client=_claude(
            '{"gender": "male", "confidence": 0.9}',
            '{"gender": "unknown", "confidence": 0.1}',
        ))
        service = EnrichmentService(inference=inference, connector=connector,
                                    session_factory=session_factory, write_back=True, sleep=_no_sleep)

        # A failed write-back is logged; the customer is still enriched
        assert _run(service.enrich_pending_customers()) == 2
        connector.upsert_customer_metafield.assert_awaited_once_with(1, "male")

    def test_processing_failure_marks_customer_failed(self, session_factory, add_customer, store):
        add_customer(1)
        add_customer(2)

        inference = MagicMock()
        inference.is_available.return_value = True
        inference.infer_gender = AsyncMock(side_effect=[
            RuntimeError("boom"),
            GenderInference("female", 0.7),
        ])
        service = EnrichmentService(inference=inference, session_factory=session_factory,
                                    write_back=False, sleep=_no_sleep)

        assert _run(service.enrich_pending_customers()) == 1

        store.db.expire_all()
        assert store.get_by_external_id(1).enrichment_status == "failed"
        assert store.get_by_external_id(2).enrichment_status == "complete"

    def test_no_inference_configured_returns_zero(self, session_factory, add_customer, store):
        add_customer(1)
        service = EnrichmentService(inference=GenderInferenceService(), session_factory=session_factory,
                                    write_back=False, sleep=_no_sleep)

        assert _run(service.enrich_pending_customers()) == 0
        assert store.get_by_external_id(1).enrichment_status == "pending"

    def test_enrich_all_loops_until_empty(self, session_factory, add_customer):
        for i in range(1, 6):
            add_customer(i)

        inference = MagicMock()
        inference.is_available.return_value = True
        inference.infer_gender = AsyncMock(return_value=GenderInference("male", 0.6))
        service = EnrichmentService(inference=inference, session_factory=session_factory,
                                    write_back=False, sleep=_no_sleep)

        assert _run(service.enrich_all_pending_customers(batch_size=2)) == 5
        assert inference.infer_gender.await_count == 5
