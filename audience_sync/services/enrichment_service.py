"""
Gender enrichment

Infers a customer's likely gender from name / email / country with Claude
and validates the model output strictly. Inference never raises: anything
unusable becomes {"gender": "unknown", "confidence": 0.0}.
"""
import asyncio
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

try:
    from anthropic import AsyncAnthropic
except ImportError:
    AsyncAnthropic = None

from audience_sync.config import get_settings
from audience_sync.models.base import SessionLocal
from audience_sync.models.customer import GENDERS
from audience_sync.services.customer_store import CustomerStore
from audience_sync.utils.logger import log

SYSTEM_PROMPT = (
    "You are a gender inference assistant for marketing segmentation. "
    "Respond with valid JSON only."
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_EMAIL_SEPARATORS = re.compile(r"[._\-+]+")


@dataclass(frozen=True)
class GenderInference:
    gender: str
    confidence: float

    @property
    def is_known(self) -> bool:
        return self.gender != "unknown"

    def to_dict(self) -> dict:
        return {"gender": self.gender, "confidence": self.confidence}


UNKNOWN = GenderInference(gender="unknown", confidence=0.0)


def build_identifier(
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str]
) -> Tuple[str, str]:
    """
    Pick the string the model classifies.

    Returns:
        (identifier, source) where source is "name", "email" or "unknown"
    """
    name = " ".join(p.strip() for p in (first_name, last_name) if p and p.strip())
    if name:
        return name, "name"

    local_part = (email or "").split("@")[0]
    local_part = _EMAIL_SEPARATORS.sub(" ", local_part).strip()
    if local_part:
        return local_part, "email"

    return "unknown", "unknown"


def build_prompt(
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
    country: Optional[str]
) -> str:
    identifier, source = build_identifier(first_name, last_name, email)
    email_domain = email.split("@", 1)[1] if email and "@" in email else ""

    return f"""Based on this person's information, infer their likely gender for marketing purposes.
Primary identifier ({source}): {identifier}
Email domain: {email_domain or "unknown"}
Country: {country or "unknown"}

Respond with JSON only: {{"gender": "male" | "female" | "unknown", "confidence": 0.0-1.0}}"""


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(confidence) or math.isinf(confidence):
        return 0.0
    return max(0.0, min(1.0, confidence))


def parse_inference(content: Optional[str]) -> GenderInference:
    """
    Validate raw model output

    Unparseable JSON or a gender outside male/female/unknown gives
    UNKNOWN. Confidence is always clamped into [0, 1].
    """
    if not content:
        return UNKNOWN

    match = _JSON_OBJECT.search(content)
    if not match:
        return UNKNOWN

    try:
        data = json.loads(match.group(0))
    except (json.JSONDecodeError, ValueError):
        return UNKNOWN

    if not isinstance(data, dict):
        return UNKNOWN

    gender = data.get("gender")
    if not isinstance(gender, str) or gender.strip().lower() not in GENDERS:
        return UNKNOWN

    return GenderInference(
        gender=gender.strip().lower(),
        confidence=_clamp_confidence(data.get("confidence", 0)),
    )


class GenderInferenceService:
    """
    One Claude call per customer, no internal throttling

    Callers pace sequential calls themselves.
    """

    def __init__(self, client: Any = None):
        settings = get_settings()
        self.model = settings.llm_model
        self.max_tokens = settings.llm_max_tokens
        self.client = client
        self.enabled = client is not None

        if client is None and settings.enable_llm_enrichment and settings.anthropic_api_key:
            if AsyncAnthropic is None:
                log.warning("Anthropic SDK not installed. Install with: pip install anthropic")
            else:
                self.client = AsyncAnthropic(api_key=settings.anthropic_api_key)
                self.enabled = True
                log.info("Gender inference initialized with Claude")
        elif client is None:
            log.info("Gender inference disabled (no API key or feature disabled)")

    def is_available(self) -> bool:
        return self.enabled

    async def infer_gender(
        self,
        first_name: Optional[str],
        last_name: Optional[str],
        email: Optional[str],
        country: Optional[str]
    ) -> GenderInference:
        """
        Infer gender for one customer

        Never raises; provider errors and malformed output give UNKNOWN.
        """
        if not self.enabled:
            return UNKNOWN

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_prompt(first_name, last_name, email, country)}]
            )
            content = "".join(
                getattr(block, "text", "") for block in (response.content or [])
            )
            return parse_inference(content)

        except Exception as e:
            log.error(f"Gender inference error: {str(e)}")
            return UNKNOWN


class EnrichmentService:
    """
    Background enrichment of customers still marked pending

    Used after each sync, by the scheduler, and by the admin endpoint.
    """

    def __init__(
        self,
        inference: Optional[GenderInferenceService] = None,
        connector=None,
        session_factory: Callable = SessionLocal,
        write_back: Optional[bool] = None,
        delay: float = 0.2,
        sleep=asyncio.sleep,
    ):
        settings = get_settings()
        self.inference = inference or GenderInferenceService()
        self.connector = connector
        self.session_factory = session_factory
        self.write_back = settings.write_back_to_shopify if write_back is None else write_back
        self.delay = delay
        self._sleep = sleep

    def _get_connector(self):
        if self.connector is None:
            from audience_sync.connectors.shopify import ShopifyConnector
            self.connector = ShopifyConnector()
        return self.connector

    async def enrich_pending_customers(self, batch_size: int = 10) -> int:
        """
        Enrich one batch of pending customers

        Returns:
            Number of customers marked complete
        """
        if not self.inference.is_available():
            log.info("Skipping enrichment: gender inference is not configured")
            return 0

        db = self.session_factory()
        enriched = 0
        try:
            store = CustomerStore(db)
            pending = store.get_pending_customers(batch_size)

            if not pending:
                return 0

            log.info(f"Processing {len(pending)} customers for enrichment")

            for customer in pending:
                customer_id = customer.id
                external_id = customer.external_id
                try:
                    result = await self.inference.infer_gender(
                        customer.first_name,
                        customer.last_name,
                        customer.email,
                        customer.country
                    )
                    store.set_enrichment(customer_id, result.gender, result.confidence)

                    if self.write_back and result.is_known:
                        try:
                            await self._get_connector().upsert_customer_metafield(external_id, result.gender)
                        except Exception as e:
                            log.error(f"Failed to write back to Shopify for customer {customer_id}: {str(e)}")

                    enriched += 1
                    await self._sleep(self.delay)

                except Exception as e:
                    log.error(f"Failed to enrich customer {customer_id}: {str(e)}")
                    db.rollback()
                    try:
                        store.mark_enrichment_failed(external_id)
                    except Exception as mark_error:
                        log.error(f"Could not mark customer {customer_id} as failed: {str(mark_error)}")
                        db.rollback()

            log.info(f"Enriched {enriched} customers")
            return enriched

        finally:
            db.close()

    async def enrich_all_pending_customers(self, batch_size: int = 10, pause: float = 0.5) -> int:
        """Run batches until one enriches nothing"""
        total = 0
        while True:
            enriched = await self.enrich_pending_customers(batch_size)
            total += enriched
            if enriched == 0:
                break
            await self._sleep(pause)

        log.info(f"Enrichment loop complete. Total enriched: {total}")
        return total
