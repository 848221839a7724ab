"""
Database models for the Workshop Economy Simulator.

Defines SQLAlchemy models mirroring the workshop state document: items,
recipes with their inputs, the price snapshot log, inventory and settings.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class ItemRecord(Base):
    """A catalog item."""

    __tablename__ = 'items'

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    category = Column(String(20), nullable=False, default='material')
    icon = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<ItemRecord(id={self.id}, name={self.name})>"


class RecipeRecord(Base):
    """A recipe; at most one per output item."""

    __tablename__ = 'recipes'

    id = Column(String(36), primary_key=True)
    output_item_id = Column(String(36), ForeignKey('items.id'), nullable=False, unique=True)
    output_quantity = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    inputs = relationship(
        'RecipeInputRecord',
        back_populates='recipe',
        cascade='all, delete-orphan',
        order_by='RecipeInputRecord.item_id',
    )


class RecipeInputRecord(Base):
    """One input line of a recipe."""

    __tablename__ = 'recipe_inputs'

    recipe_id = Column(String(36), ForeignKey('recipes.id'), primary_key=True)
    item_id = Column(String(36), ForeignKey('items.id'), primary_key=True)
    quantity = Column(Integer, nullable=False)

    recipe = relationship('RecipeRecord', back_populates='inputs')


class PriceSnapshotRecord(Base):
    """Append-only price log; ``position`` preserves log order."""

    __tablename__ = 'price_snapshots'

    id = Column(String(36), primary_key=True)
    position = Column(Integer, nullable=False)
    item_id = Column(String(36), ForeignKey('items.id'), nullable=False, index=True)
    unit_price = Column(Integer, nullable=False)
    captured_at = Column(DateTime(timezone=True), nullable=False)
    source = Column(String(20), nullable=False, default='manual')
    note = Column(String(500), nullable=True)

    __table_args__ = (
        Index('idx_price_position', 'position'),
        Index('idx_price_item_time', 'item_id', 'captured_at'),
    )

    def __repr__(self):
        return f"<PriceSnapshotRecord(item={self.item_id}, price={self.unit_price})>"


class InventoryRecord(Base):
    """Owned quantity of one item."""

    __tablename__ = 'inventory'

    item_id = Column(String(36), ForeignKey('items.id'), primary_key=True)
    quantity = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class AppSettings(Base):
    """Application key/value settings."""

    __tablename__ = 'app_settings'

    key = Column(String(100), primary_key=True)
    value = Column(String(500), nullable=True)
    value_type = Column(String(50), nullable=True)
    description = Column(String(500), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())
