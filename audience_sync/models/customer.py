"""
Customer data models
Customers mirrored from Shopify, enriched with inferred gender
"""
from sqlalchemy import Column, Integer, BigInteger, String, Float, DateTime, Text, Numeric
from audience_sync.models.base import Base
from audience_sync.utils.dates import utc_now

GENDERS = ("male", "female", "unknown")
ENRICHMENT_STATUSES = ("pending", "complete", "failed")

# Columns owned by Shopify; overwritten on every upsert
SOURCE_FIELDS = (
    "email",
    "phone",
    "first_name",
    "last_name",
    "city",
    "country",
    "province",
    "postal_code",
    "tags",
    "orders_count",
    "total_spent",
    "created_at_source",
    "updated_at_source",
    "last_order_at",
)

# Columns owned by the enrichment pipeline
ENRICHMENT_FIELDS = ("gender_inferred", "gender_confidence", "enrichment_status")


class Customer(Base):
    """
    Shopify customer with enrichment state

    external_id is the Shopify customer ID and the only reconciliation key.
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(BigInteger, unique=True, index=True, nullable=False)

    # Identity / contact
    email = Column(String, index=True, nullable=True)
    phone = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    # Default address (flattened)
    city = Column(String, index=True, nullable=True)
    country = Column(String, index=True, nullable=True)
    province = Column(String, index=True, nullable=True)
    postal_code = Column(String, nullable=True)

    # Commerce
    tags = Column(Text, nullable=True)  # "vip, wholesale"
    orders_count = Column(Integer, default=0, nullable=False)
    total_spent = Column(Numeric(12, 2), default=0, nullable=False)

    # Shopify timestamps
    created_at_source = Column(DateTime, index=True, nullable=True)
    updated_at_source = Column(DateTime, index=True, nullable=True)
    last_order_at = Column(DateTime, index=True, nullable=True)

    # Enrichment
    gender_inferred = Column(String, index=True, nullable=True)  # male, female, unknown
    gender_confidence = Column(Float, nullable=True)  # 0.0 - 1.0
    enrichment_status = Column(String, index=True, default="pending", nullable=False)  # pending, complete, failed

    # Local timestamps
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "email": self.email,
            "phone": self.phone,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "city": self.city,
            "country": self.country,
            "province": self.province,
            "postal_code": self.postal_code,
            "tags": self.tags,
            "orders_count": self.orders_count,
            "total_spent": float(self.total_spent or 0),
            "created_at_source": self.created_at_source.isoformat() if self.created_at_source else None,
            "updated_at_source": self.updated_at_source.isoformat() if self.updated_at_source else None,
            "last_order_at": self.last_order_at.isoformat() if self.last_order_at else None,
            "gender_inferred": self.gender_inferred,
            "gender_confidence": self.gender_confidence,
            "enrichment_status": self.enrichment_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
