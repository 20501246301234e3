"""
Inventory balance ledger: the only writer of item balances.
"""
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.orm import Session

from ..models.models import InventoryItem
from .errors import InsufficientBalance, NotFound, ValidationFailed


logger = structlog.get_logger(__name__)


def get_item(db: Session, item_id: uuid.UUID, lock: bool = False) -> InventoryItem:
    query = db.query(InventoryItem).filter(
        InventoryItem.id == item_id,
        InventoryItem.deleted_at.is_(None),
    )
    if lock:
        query = query.with_for_update()
    item = query.first()
    if item is None:
        raise NotFound(f"Inventory item {item_id} not found")
    return item


def _check_quantity(quantity) -> float:
    if quantity is None or float(quantity) <= 0:
        raise ValidationFailed("Quantity must be greater than zero", field="quantity")
    return float(quantity)


def consume(db: Session, item_id: uuid.UUID, quantity: float) -> InventoryItem:
    """
    Take stock out of an item.

    The row is locked for the read-modify-write. A shortfall raises
    InsufficientBalance and leaves the balance untouched; it never clamps.
    """
    quantity = _check_quantity(quantity)
    item = get_item(db, item_id, lock=True)
    balance = float(item.balance or 0)
    if balance < quantity:
        logger.warning(
            "insufficient_balance",
            item_id=str(item.id),
            balance=balance,
            requested=quantity,
        )
        raise InsufficientBalance(
            f"Insufficient stock for {item.name}: balance {balance:g}, requested {quantity:g}",
            field="quantity",
        )
    item.balance = balance - quantity
    item.outward = float(item.outward or 0) + quantity
    item.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info("stock_consumed", item_id=str(item.id), quantity=quantity, balance=item.balance)
    return item


def receive(db: Session, item_id: uuid.UUID, quantity: float) -> InventoryItem:
    """Stock-in adjustment"""
    quantity = _check_quantity(quantity)
    item = get_item(db, item_id, lock=True)
    item.balance = float(item.balance or 0) + quantity
    item.inward = float(item.inward or 0) + quantity
    item.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info("stock_received", item_id=str(item.id), quantity=quantity, balance=item.balance)
    return item
