"""Address book service."""
import logging
from typing import Any, Dict, List
from sqlalchemy import update
from sqlalchemy.orm import Session
from opentelemetry import trace

from config import MAX_ADDRESSES_PER_USER
from errors import BusinessRuleError, NotFoundError
from models import Address

logger = logging.getLogger(__name__)


class AddressService:
    """Bounded per-user address book with a single default address."""

    def __init__(self, max_addresses: int = MAX_ADDRESSES_PER_USER):
        self.max_addresses = max_addresses
        self.tracer = trace.get_tracer(__name__)

    def list_addresses(self, db: Session, user_id: str) -> List[Address]:
        """Default address first, then newest."""
        return (
            db.query(Address)
            .filter(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.created_at.desc())
            .all()
        )

    def _get_owned(self, db: Session, user_id: str, address_id: str) -> Address:
        address = db.query(Address).filter(Address.id == address_id, Address.user_id == user_id).first()
        if not address:
            raise NotFoundError("Address not found")
        return address

    @staticmethod
    def _clear_default(db: Session, user_id: str) -> None:
        db.execute(
            update(Address)
            .where(Address.user_id == user_id, Address.is_default.is_(True))
            .values(is_default=False)
        )

    def create_address(self, db: Session, user_id: str, data: Dict[str, Any]) -> Address:
        """
        Add an address to the user's book.

        The first address always becomes the default.

        Args:
            db: Database session
            user_id: Owner
            data: Address fields (snake_case)

        Returns:
            The created address

        Raises:
            BusinessRuleError: If the user already has the maximum number of addresses
        """
        with self.tracer.start_as_current_span("db.transaction.create_address") as db_span:
            db_span.set_attribute("db.operation", "INSERT")
            db_span.set_attribute("db.table", "addresses")
            db_span.set_attribute("user.id", user_id)

            count = db.query(Address).filter(Address.user_id == user_id).count()
            if count >= self.max_addresses:
                raise BusinessRuleError(f"Maximum {self.max_addresses} addresses allowed per user")

            fields = dict(data)
            make_default = bool(fields.pop("is_default", False)) or count == 0
            try:
                if make_default:
                    self._clear_default(db, user_id)
                address = Address(user_id=user_id, is_default=make_default, **fields)
                db.add(address)
                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info("Address created", extra={
            "user_id": user_id,
            "address_id": address.id,
            "is_default": make_default
        })
        return address

    def update_address(self, db: Session, user_id: str, address_id: str, changes: Dict[str, Any]) -> Address:
        """
        Partially update an address; only provided fields change.

        Setting is_default clears the flag on the user's other addresses.
        """
        address = self._get_owned(db, user_id, address_id)
        try:
            if changes.get("is_default"):
                self._clear_default(db, user_id)
            for key, value in changes.items():
                if value is not None:
                    setattr(address, key, value)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(address)
        logger.info("Address updated", extra={"user_id": user_id, "address_id": address_id})
        return address

    def set_default(self, db: Session, user_id: str, address_id: str) -> Address:
        address = self._get_owned(db, user_id, address_id)
        try:
            self._clear_default(db, user_id)
            address.is_default = True
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(address)
        logger.info("Default address changed", extra={"user_id": user_id, "address_id": address_id})
        return address

    def delete_address(self, db: Session, user_id: str, address_id: str) -> None:
        """
        Delete an address.

        When the default is removed, the earliest-created remaining
        address becomes the default in the same transaction.
        """
        address = self._get_owned(db, user_id, address_id)
        was_default = address.is_default
        promoted = None
        try:
            db.delete(address)
            db.flush()
            if was_default:
                promoted = (
                    db.query(Address)
                    .filter(Address.user_id == user_id)
                    .order_by(Address.created_at.asc())
                    .first()
                )
                if promoted:
                    promoted.is_default = True
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Address deleted", extra={
            "user_id": user_id,
            "address_id": address_id,
            "promoted_address_id": promoted.id if promoted else None
        })
