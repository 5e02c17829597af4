"""CreditPackage reference data."""

from sqlalchemy import Boolean, Column, Integer, String, Text, true

from database import Base


class CreditPackage(Base):
    """Purchasable SKU mapped to a credit quantity and price."""

    __tablename__ = "credit_packages"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    credits = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    description = Column(Text, nullable=True)
    is_popular = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True, server_default=true())
