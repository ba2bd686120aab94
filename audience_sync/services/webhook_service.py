"""
Shopify webhook handling

Signature verification plus customers/create and customers/update
ingestion. Both topics go through the same merge as the bulk sync, so a
redelivered or out-of-order webhook never throws away enrichment.
"""
import base64
import hashlib
import hmac
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from audience_sync.connectors.shopify import normalize_customer
from audience_sync.models.base import SessionLocal
from audience_sync.models.customer import Customer
from audience_sync.services.customer_merge import build_customer_row
from audience_sync.services.customer_store import CustomerStore
from audience_sync.utils.logger import log


def verify_shopify_webhook(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check X-Shopify-Hmac-Sha256 against the raw request body

    Returns False when the secret or signature is missing, or when the
    signature is not ASCII (a base64 digest never is).
    """
    if not secret or not signature:
        return False

    try:
        provided = signature.encode("ascii")
    except UnicodeEncodeError:
        return False

    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return hmac.compare_digest(base64.b64encode(digest), provided)


class WebhookService:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def _ingest(self, payload: Dict[str, Any], topic: str) -> Customer:
        record = normalize_customer(payload)
        db = self.session_factory()
        try:
            store = CustomerStore(db)
            existing = store.get_by_external_id(record.external_id)
            customer = store.upsert_customer(build_customer_row(existing, record))
            log.info(f"Webhook {topic}: upserted customer {record.external_id}")
            return customer
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def handle_customer_created(self, payload: Dict[str, Any]) -> Customer:
        return self._ingest(payload, "customers/create")

    def handle_customer_updated(self, payload: Dict[str, Any]) -> Customer:
        return self._ingest(payload, "customers/update")
